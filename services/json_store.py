# /conquistas/services/json_store.py
"""
JSON storage adapter with atomic writes and simple schema versioning.
- One document holds achievements, library images, categories, users, meta.
- Uses a cross-platform file lock (best-effort) to avoid race conditions.
- Writes via temp file + os.replace for atomicity.
- A malformed document is logged and replaced by the bundled seed data.
"""

import copy
import json
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from services.errors import ConflictError
from services.logic import seed_achievements, seed_categories

SCHEMA_VERSION = 2

log = logging.getLogger(__name__)


def ensure_data_dir(path: str):
    os.makedirs(path, exist_ok=True)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def seed_document() -> Dict[str, Any]:
    now = _now()
    achievements = []
    for a in seed_achievements():
        row = a.to_dict()
        row["created_at"] = row["updated_at"] = now
        achievements.append(row)
    return {
        "achievements": achievements,
        "images": [],
        "categories": [c.to_dict() for c in seed_categories()],
        "users": [],
        "meta": {"schema_version": SCHEMA_VERSION, "revision": 0},
    }


# --- very small lock helper ---
class _FileLock:
    def __init__(self, path, timeout=10.0):
        self.lock_path = path + ".lock"
        self.timeout = timeout
        self.fd = None

    def __enter__(self):
        # naive spin lock; a lock older than the timeout is treated as stale
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                self.fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
                break
            except FileExistsError:
                if time.monotonic() > deadline:
                    log.warning("Breaking stale lock %s", self.lock_path)
                    try:
                        os.remove(self.lock_path)
                    except FileNotFoundError:
                        pass
                    deadline = time.monotonic() + self.timeout
                time.sleep(0.02)
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            os.close(self.fd)
        except OSError:
            pass
        try:
            os.remove(self.lock_path)
        except FileNotFoundError:
            pass


class JSONAdapter:
    def __init__(self, data_path: str):
        self.path = data_path
        # Initialize file if missing
        if not os.path.exists(self.path):
            ensure_data_dir(os.path.dirname(self.path) or ".")
            self._atomic_write(seed_document())
        self._ensure_schema()

    # --- internal helpers ---
    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("document root is not an object")
        except (ValueError, OSError) as e:
            log.error("Unreadable data file %s (%s); using seed data", self.path, e)
            return seed_document()
        # tolerate partial documents written by older versions
        base = seed_document()
        for k in ("images", "users"):
            data.setdefault(k, [])
        data.setdefault("achievements", base["achievements"])
        data.setdefault("categories", base["categories"])
        data.setdefault("meta", {"schema_version": 0, "revision": 0})
        data["meta"].setdefault("revision", 0)
        return data

    def _read(self) -> Dict[str, Any]:
        with _FileLock(self.path):
            return self._load()

    def _atomic_write(self, data: Dict[str, Any]):
        tmp_fd, tmp_path = tempfile.mkstemp(prefix="conquistas_", suffix=".json",
                                            dir=os.path.dirname(self.path) or ".")
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)  # atomic on POSIX/Windows
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    @contextmanager
    def _transaction(self):
        # read-modify-write under one lock; nothing is written if the body raises
        with _FileLock(self.path):
            data = self._load()
            yield data
            self._atomic_write(data)

    def _ensure_schema(self):
        with self._transaction() as data:
            sv = int(data.get("meta", {}).get("schema_version", 0))
            if sv < 2:
                # v1 -> v2: optimistic-concurrency version per achievement
                for a in data["achievements"]:
                    a.setdefault("version", 1)
            data["meta"]["schema_version"] = SCHEMA_VERSION

    # --- public API mirroring PostgresAdapter ---
    def ensure_schema(self):
        # already ensured by constructor; keep interface parity
        return

    # achievements
    def list_achievements(self) -> List[Dict[str, Any]]:
        return self._read()["achievements"]

    def get_achievement(self, aid: str) -> Optional[Dict[str, Any]]:
        return next((a for a in self._read()["achievements"] if a["id"] == aid), None)

    def insert_achievement(self, row: Dict[str, Any]) -> Dict[str, Any]:
        with self._transaction() as data:
            if any(a["id"] == row["id"] for a in data["achievements"]):
                raise ConflictError(f"Achievement {row['id']} already exists")
            now = _now()
            new = dict(row, version=1, created_at=now, updated_at=now)
            data["achievements"].append(new)
        return copy.deepcopy(new)

    def update_achievement(self, row: Dict[str, Any], expected_version: Optional[int] = None) -> Optional[Dict[str, Any]]:
        with self._transaction() as data:
            existing = next((a for a in data["achievements"] if a["id"] == row["id"]), None)
            if existing is None:
                return None
            current = int(existing.get("version", 1))
            if expected_version is not None and expected_version != current:
                raise ConflictError(
                    f"Achievement {row['id']} was changed by someone else (version {current})")
            for k in ("title", "description", "rarity", "category", "image",
                      "requirements", "reward", "unlocked"):
                if k in row:
                    existing[k] = row[k]
            existing["version"] = current + 1
            existing["updated_at"] = _now()
            out = copy.deepcopy(existing)
        return out

    def delete_achievement(self, aid: str) -> bool:
        with self._transaction() as data:
            before = len(data["achievements"])
            data["achievements"] = [a for a in data["achievements"] if a["id"] != aid]
            return len(data["achievements"]) != before

    # categories
    def list_categories(self) -> List[Dict[str, Any]]:
        return self._read()["categories"]

    def upsert_category(self, row: Dict[str, Any]) -> Dict[str, Any]:
        with self._transaction() as data:
            existing = next((c for c in data["categories"] if c["id"] == row["id"]), None)
            if existing:
                existing["name"] = row["name"]
            else:
                data["categories"].append({"id": row["id"], "name": row["name"]})
        return {"id": row["id"], "name": row["name"]}

    def delete_category(self, cid: str) -> bool:
        with self._transaction() as data:
            before = len(data["categories"])
            data["categories"] = [c for c in data["categories"] if c["id"] != cid]
            return len(data["categories"]) != before

    # library images
    def list_images(self) -> List[Dict[str, Any]]:
        return sorted(self._read()["images"], key=lambda r: r["created_at"], reverse=True)

    def get_image(self, iid: str) -> Optional[Dict[str, Any]]:
        return next((i for i in self._read()["images"] if i["id"] == iid), None)

    def insert_image(self, row: Dict[str, Any]) -> Dict[str, Any]:
        with self._transaction() as data:
            data["images"].insert(0, dict(row))
        return dict(row)

    def delete_image(self, iid: str) -> bool:
        with self._transaction() as data:
            before = len(data["images"])
            data["images"] = [i for i in data["images"] if i["id"] != iid]
            return len(data["images"]) != before

    # users
    def get_user(self, uid: str) -> Optional[Dict[str, Any]]:
        return next((u for u in self._read()["users"] if u["id"] == uid), None)

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        email = email.lower()
        return next((u for u in self._read()["users"] if u["email"].lower() == email), None)

    def insert_user(self, row: Dict[str, Any]) -> Dict[str, Any]:
        with self._transaction() as data:
            if any(u["email"].lower() == row["email"].lower() for u in data["users"]):
                raise ConflictError("Email already registered")
            new = dict(row, created_at=_now())
            data["users"].append(new)
        return dict(new)

    def update_user(self, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._transaction() as data:
            existing = next((u for u in data["users"] if u["id"] == row["id"]), None)
            if existing is None:
                return None
            clash = next((u for u in data["users"]
                          if u["id"] != row["id"] and u["email"].lower() == row["email"].lower()), None)
            if clash:
                raise ConflictError("Email already registered")
            existing.update({k: row[k] for k in ("username", "email", "is_admin", "password_hash") if k in row})
            out = dict(existing)
        return out

    # published revision (cross-client change counter)
    def get_revision(self) -> int:
        return int(self._read()["meta"].get("revision", 0))

    def bump_revision(self) -> int:
        with self._transaction() as data:
            data["meta"]["revision"] = int(data["meta"].get("revision", 0)) + 1
            return data["meta"]["revision"]
