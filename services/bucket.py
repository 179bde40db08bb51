# /conquistas/services/bucket.py
"""
Filesystem object storage for card and library images.

Objects live flat under one directory and are served by the media blueprint
at /uploads/<key>, so every URL handed out survives reloads and is the same
for every client.
"""

import base64
import binascii
import logging
import mimetypes
import os
import re
import tempfile
from pathlib import Path
from typing import Iterable, Optional, Tuple
from urllib.parse import unquote_to_bytes

from services.errors import StorageError, ValidationError

log = logging.getLogger(__name__)

URL_PREFIX = "/uploads/"
_KEY_RE = re.compile(r"[^A-Za-z0-9._-]+")
_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^,;]*)*?),(?P<payload>.*)$", re.S)

# mimetypes gives odd answers for a few of these (.jpe, .svgz)
_EXT_FOR_MIME = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}


def safe_key(key: str) -> str:
    key = _KEY_RE.sub("-", os.path.basename(key or "")).strip(".-")
    if not key:
        raise ValidationError("Invalid object key")
    return key


def ext_for(content_type: Optional[str], filename: Optional[str] = None) -> str:
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[1].lower()
        if ext:
            return "jpg" if ext == "jpeg" else ext
    if content_type in _EXT_FOR_MIME:
        return _EXT_FOR_MIME[content_type]
    guessed = mimetypes.guess_extension(content_type or "") or ".bin"
    return guessed.lstrip(".")


def decode_data_uri(uri: str) -> Tuple[bytes, str]:
    """data:[<mime>][;base64],<payload> -> (bytes, mime)"""
    m = _DATA_URI_RE.match(uri or "")
    if not m:
        raise ValidationError("Malformed data URI", {"image": "Malformed data URI."})
    mime = (m.group("mime") or "text/plain").lower()
    payload = m.group("payload")
    try:
        if ";base64" in (m.group("params") or ""):
            data = base64.b64decode(payload, validate=True)
        else:
            data = unquote_to_bytes(payload)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Malformed data URI", {"image": "Image payload is not valid base64."}) from e
    return data, mime


class ImageBucket:
    def __init__(self, root: str, public_base: str = ""):
        self.root = Path(root)
        self.public_base = (public_base or "").rstrip("/")
        # Ensure upload directory exists
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.root / safe_key(key)

    def upload(self, key: str, data: bytes, upsert: bool = True) -> str:
        """Write the object and return its public URL."""
        dest = self.path_for(key)
        if dest.exists() and not upsert:
            raise StorageError(f"Object {dest.name} already exists")
        tmp = None
        try:
            fd, tmp = tempfile.mkstemp(dir=str(self.root), prefix=".upload-")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, dest)
        except OSError as e:
            log.exception("Image upload failed for %s", dest.name)
            raise StorageError("Could not store image") from e
        finally:
            if tmp is not None and os.path.exists(tmp):
                os.remove(tmp)
        return self.public_url(dest.name)

    def read(self, key: str) -> Optional[bytes]:
        """Object bytes, or None when there is no such object."""
        try:
            return self.path_for(key).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Could not read {key}") from e

    def public_url(self, key: str) -> str:
        return f"{self.public_base}{URL_PREFIX}{safe_key(key)}"

    def key_from_url(self, url: Optional[str]) -> Optional[str]:
        """Object key for a URL this bucket handed out, else None."""
        if not url:
            return None
        path = url.split("?", 1)[0]
        if self.public_base and path.startswith(self.public_base):
            path = path[len(self.public_base):]
        if not path.startswith(URL_PREFIX):
            return None
        return path[len(URL_PREFIX):] or None

    def remove(self, keys: Iterable[str]) -> int:
        removed = 0
        for key in keys:
            try:
                self.path_for(key).unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StorageError(f"Could not remove {key}") from e
        return removed
