# /conquistas/services/db.py
"""
SQL adapter using SQLAlchemy Core (connection pooling, simple retries).
Targets PostgreSQL; statements stay portable enough to run on SQLite.
Exposes a uniform interface used by the catalog, gallery and auth services:
    - ensure_schema()
    - list_achievements(), get_achievement(id), insert_achievement(row),
      update_achievement(row, expected_version), delete_achievement(id)
    - list_categories(), upsert_category(row), delete_category(id)
    - list_images(), get_image(id), insert_image(row), delete_image(id)
    - get_user(id), get_user_by_email(email), insert_user(row), update_user(row)
    - get_revision(), bump_revision()
The JSON adapter mirrors the same methods.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError, OperationalError

from services.errors import ConflictError
from services.logic import seed_achievements, seed_categories

RETRY_SECONDS = [0.2, 0.5, 1.0]

log = logging.getLogger(__name__)

_ACHIEVEMENT_COLS = ("id, title, description, requirements, reward, category, rarity, "
                     "image_path, unlocked, version, created_at, updated_at")


class StorageUnavailableError(Exception):
    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _achievement_out(row) -> Dict[str, Any]:
    d = dict(row)
    d["image"] = d.pop("image_path", None)
    d["unlocked"] = bool(d.get("unlocked"))
    return d


class PostgresAdapter:
    def __init__(self, db_url: str):
        if not db_url:
            raise StorageUnavailableError("DATABASE_URL not provided")
        try:
            self.engine = create_engine(db_url, pool_pre_ping=True)
            # Warm-up test connection
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            raise StorageUnavailableError(str(e)) from e

    # --- schema / migrations ---
    def ensure_schema(self):
        with self.engine.begin() as conn:
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS achievements (
                  id VARCHAR(120) PRIMARY KEY,
                  title VARCHAR(200) NOT NULL,
                  description TEXT,
                  requirements TEXT,
                  reward TEXT,
                  category VARCHAR(60) NOT NULL,
                  rarity VARCHAR(20) NOT NULL,
                  image_path TEXT,
                  unlocked BOOLEAN DEFAULT FALSE,
                  version INT NOT NULL DEFAULT 1,
                  created_at VARCHAR(40),
                  updated_at VARCHAR(40)
                );
            """))
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS gallery_images (
                  id VARCHAR(120) PRIMARY KEY,
                  name VARCHAR(255) NOT NULL,
                  url TEXT NOT NULL,
                  size BIGINT NOT NULL DEFAULT 0,
                  created_at VARCHAR(40) NOT NULL
                );
            """))
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS categories (
                  id VARCHAR(60) PRIMARY KEY,
                  name VARCHAR(120) NOT NULL
                );
            """))
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS users (
                  id VARCHAR(64) PRIMARY KEY,
                  username VARCHAR(120) NOT NULL,
                  email VARCHAR(255) NOT NULL UNIQUE,
                  password_hash TEXT NOT NULL,
                  is_admin BOOLEAN DEFAULT FALSE,
                  created_at VARCHAR(40)
                );
            """))
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS meta (
                  k VARCHAR(60) PRIMARY KEY,
                  v TEXT NOT NULL
                );
            """))
            # seed schema_version / revision if absent
            r = conn.execute(text("SELECT v FROM meta WHERE k='schema_version'")).fetchone()
            if not r:
                conn.execute(text("INSERT INTO meta(k, v) VALUES ('schema_version','2')"))
                conn.execute(text("INSERT INTO meta(k, v) VALUES ('revision','0')"))

            # first boot: bundled seed dataset
            if not conn.execute(text("SELECT COUNT(*) FROM categories")).scalar():
                for c in seed_categories():
                    conn.execute(text("INSERT INTO categories(id, name) VALUES (:id, :name)"), c.to_dict())
            if not conn.execute(text("SELECT COUNT(*) FROM achievements")).scalar():
                now = _now()
                for a in seed_achievements():
                    conn.execute(text(f"""
                        INSERT INTO achievements ({_ACHIEVEMENT_COLS})
                        VALUES (:id, :title, :description, :requirements, :reward, :category,
                                :rarity, :image, :unlocked, 1, :now, :now)
                    """), dict(a.to_dict(), now=now))

    # --- helpers ---
    def _retry(self, fn):
        for delay in RETRY_SECONDS + [None]:
            try:
                return fn()
            except OperationalError:
                if delay is None:
                    raise
                log.warning("Database operation failed, retrying in %ss", delay)
                time.sleep(delay)

    # --- achievements ---
    def list_achievements(self) -> List[Dict[str, Any]]:
        def _fn():
            with self.engine.begin() as conn:
                rows = conn.execute(text(f"""
                    SELECT {_ACHIEVEMENT_COLS} FROM achievements
                    ORDER BY created_at ASC, id ASC
                """)).mappings().all()
                return [_achievement_out(r) for r in rows]
        return self._retry(_fn)

    def get_achievement(self, aid: str) -> Optional[Dict[str, Any]]:
        def _fn():
            with self.engine.begin() as conn:
                row = conn.execute(text(f"SELECT {_ACHIEVEMENT_COLS} FROM achievements WHERE id=:id"),
                                   {"id": aid}).mappings().fetchone()
                return _achievement_out(row) if row else None
        return self._retry(_fn)

    def insert_achievement(self, row: Dict[str, Any]) -> Dict[str, Any]:
        def _fn():
            now = _now()
            try:
                with self.engine.begin() as conn:
                    conn.execute(text(f"""
                        INSERT INTO achievements ({_ACHIEVEMENT_COLS})
                        VALUES (:id, :title, :description, :requirements, :reward, :category,
                                :rarity, :image, :unlocked, 1, :now, :now)
                    """), dict(row, now=now))
            except IntegrityError as e:
                raise ConflictError(f"Achievement {row['id']} already exists") from e
            return self.get_achievement(row["id"])
        return self._retry(_fn)

    def update_achievement(self, row: Dict[str, Any], expected_version: Optional[int] = None) -> Optional[Dict[str, Any]]:
        def _fn():
            with self.engine.begin() as conn:
                current = conn.execute(text("SELECT version FROM achievements WHERE id=:id"),
                                       {"id": row["id"]}).scalar()
                if current is None:
                    return None
                expected = current if expected_version is None else expected_version
                # compare-and-set on version closes the lost-update window
                r = conn.execute(text("""
                    UPDATE achievements
                    SET title=:title, description=:description, requirements=:requirements,
                        reward=:reward, category=:category, rarity=:rarity, image_path=:image,
                        unlocked=:unlocked, version=version + 1, updated_at=:now
                    WHERE id=:id AND version=:expected
                """), dict(row, expected=expected, now=_now()))
                if r.rowcount == 0:
                    raise ConflictError(
                        f"Achievement {row['id']} was changed by someone else (version {current})")
            return self.get_achievement(row["id"])
        return self._retry(_fn)

    def delete_achievement(self, aid: str) -> bool:
        def _fn():
            with self.engine.begin() as conn:
                r = conn.execute(text("DELETE FROM achievements WHERE id=:id"), {"id": aid})
                return r.rowcount > 0
        return self._retry(_fn)

    # --- categories ---
    def list_categories(self) -> List[Dict[str, Any]]:
        def _fn():
            with self.engine.begin() as conn:
                rows = conn.execute(text("SELECT id, name FROM categories")).mappings().all()
                out = [dict(r) for r in rows]
                # "all" first, rest in insertion-ish (alphabetical) order
                return sorted(out, key=lambda c: (c["id"] != "all", c["id"]))
        return self._retry(_fn)

    def upsert_category(self, row: Dict[str, Any]) -> Dict[str, Any]:
        def _fn():
            with self.engine.begin() as conn:
                conn.execute(text("""
                    INSERT INTO categories(id, name) VALUES (:id, :name)
                    ON CONFLICT (id) DO UPDATE SET name=EXCLUDED.name
                """), {"id": row["id"], "name": row["name"]})
            return {"id": row["id"], "name": row["name"]}
        return self._retry(_fn)

    def delete_category(self, cid: str) -> bool:
        def _fn():
            with self.engine.begin() as conn:
                r = conn.execute(text("DELETE FROM categories WHERE id=:id"), {"id": cid})
                return r.rowcount > 0
        return self._retry(_fn)

    # --- library images ---
    def list_images(self) -> List[Dict[str, Any]]:
        def _fn():
            with self.engine.begin() as conn:
                rows = conn.execute(text("""
                    SELECT id, name, url, size, created_at FROM gallery_images
                    ORDER BY created_at DESC
                """)).mappings().all()
                return [dict(r) for r in rows]
        return self._retry(_fn)

    def get_image(self, iid: str) -> Optional[Dict[str, Any]]:
        def _fn():
            with self.engine.begin() as conn:
                row = conn.execute(text("SELECT id, name, url, size, created_at FROM gallery_images WHERE id=:id"),
                                   {"id": iid}).mappings().fetchone()
                return dict(row) if row else None
        return self._retry(_fn)

    def insert_image(self, row: Dict[str, Any]) -> Dict[str, Any]:
        def _fn():
            with self.engine.begin() as conn:
                conn.execute(text("""
                    INSERT INTO gallery_images(id, name, url, size, created_at)
                    VALUES (:id, :name, :url, :size, :created_at)
                """), row)
            return dict(row)
        return self._retry(_fn)

    def delete_image(self, iid: str) -> bool:
        def _fn():
            with self.engine.begin() as conn:
                r = conn.execute(text("DELETE FROM gallery_images WHERE id=:id"), {"id": iid})
                return r.rowcount > 0
        return self._retry(_fn)

    # --- users ---
    def get_user(self, uid: str) -> Optional[Dict[str, Any]]:
        def _fn():
            with self.engine.begin() as conn:
                row = conn.execute(text("SELECT * FROM users WHERE id=:id"), {"id": uid}).mappings().fetchone()
                return dict(row) if row else None
        return self._retry(_fn)

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        def _fn():
            with self.engine.begin() as conn:
                row = conn.execute(text("SELECT * FROM users WHERE LOWER(email)=:e"),
                                   {"e": email.lower()}).mappings().fetchone()
                return dict(row) if row else None
        return self._retry(_fn)

    def insert_user(self, row: Dict[str, Any]) -> Dict[str, Any]:
        def _fn():
            try:
                with self.engine.begin() as conn:
                    conn.execute(text("""
                        INSERT INTO users(id, username, email, password_hash, is_admin, created_at)
                        VALUES (:id, :username, :email, :password_hash, :is_admin, :now)
                    """), dict(row, now=_now()))
            except IntegrityError as e:
                raise ConflictError("Email already registered") from e
            return self.get_user(row["id"])
        return self._retry(_fn)

    def update_user(self, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        def _fn():
            try:
                with self.engine.begin() as conn:
                    r = conn.execute(text("""
                        UPDATE users SET username=:username, email=:email,
                            password_hash=:password_hash, is_admin=:is_admin
                        WHERE id=:id
                    """), row)
                    if r.rowcount == 0:
                        return None
            except IntegrityError as e:
                raise ConflictError("Email already registered") from e
            return self.get_user(row["id"])
        return self._retry(_fn)

    # --- published revision ---
    def get_revision(self) -> int:
        def _fn():
            with self.engine.begin() as conn:
                v = conn.execute(text("SELECT v FROM meta WHERE k='revision'")).scalar()
                return int(v or 0)
        return self._retry(_fn)

    def bump_revision(self) -> int:
        def _fn():
            with self.engine.begin() as conn:
                # v is TEXT so the counter is read, bumped and written in one transaction
                v = conn.execute(text("SELECT v FROM meta WHERE k='revision'")).scalar()
                nv = int(v or 0) + 1
                conn.execute(text("""
                    INSERT INTO meta(k, v) VALUES ('revision', :v)
                    ON CONFLICT (k) DO UPDATE SET v=EXCLUDED.v
                """), {"v": str(nv)})
                return nv
        return self._retry(_fn)
