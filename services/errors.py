# /conquistas/services/errors.py
"""
Error taxonomy shared by services and blueprints.

Every error carries the HTTP status the API layer answers with, so blueprints
can translate them without a lookup table.
"""

import functools
import logging
from typing import Dict, Optional


class ConquistasError(Exception):
    status = 500

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}

    def to_dict(self):
        out = {"ok": False, "error": self.message}
        if self.errors:
            out["errors"] = self.errors
        return out


class ValidationError(ConquistasError):
    status = 400


class AuthError(ConquistasError):
    status = 401


class PermissionDeniedError(ConquistasError):
    status = 403


class NotFoundError(ConquistasError):
    status = 404


class ConflictError(ConquistasError):
    status = 409


class StorageError(ConquistasError):
    """Backend row store or bucket failed; nothing was changed."""
    status = 502


def guarded(action: str):
    """Storage failures become StorageError; the caller's state stays as it was."""
    def deco(fn):
        log = logging.getLogger(fn.__module__)

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except ConquistasError:
                raise
            except Exception as e:
                log.exception("Error %s", action)
                raise StorageError(f"Error {action}") from e
        return wrapper
    return deco
