# /conquistas/services/catalog.py
"""
Achievement catalog: the persistence contract the rest of the app talks to.

    list() / get(id) / add(a) / update(a) / remove(id) / set_image(id, image)
    list_categories() / save_category(c) / delete_category(id) / list_rarities()

Works over either row store (JSONAdapter or PostgresAdapter) plus the image
bucket. Image payloads are normalised here so stored references are always
durable URLs: data URIs are uploaded as achievement-{id}.{ext}, blob: URIs
are refused, empty values fall back to the placeholder.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Union

from services.bucket import ImageBucket, decode_data_uri, ext_for
from services.errors import (
    ConflictError, NotFoundError, PermissionDeniedError, StorageError, ValidationError, guarded,
)
from services.logic import RARITIES, ensure_unique_id, validate_achievement, validate_category
from services.models import Achievement, Category, Rarity, ALL_CATEGORY, PLACEHOLDER_IMAGE

log = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp", "image/svg+xml")


class ImageFile:
    """An uploaded file as the web layer hands it over."""
    def __init__(self, filename: str, data: bytes, content_type: Optional[str] = None):
        self.filename = filename or ""
        self.data = data
        self.content_type = (content_type or "").lower() or None


def check_image(data: bytes, content_type: Optional[str], max_bytes: int):
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError("Unsupported image type", {"image": "Use a JPEG, PNG, GIF, WebP or SVG image."})
    if not data:
        raise ValidationError("Empty image", {"image": "The image is empty."})
    if len(data) > max_bytes:
        raise ValidationError("Image too large",
                              {"image": f"Image is too large (max {max_bytes // (1024 * 1024)}MB)."})


def _check_version(current: Dict[str, Any], expected: Optional[int]):
    # checked before any image is written; the store checks again atomically
    if expected is not None and int(current.get("version") or 1) != expected:
        raise ConflictError(
            f"Achievement {current['id']} was changed by someone else (version {current.get('version')})")


class AchievementCatalog:
    def __init__(self, storage, bucket: ImageBucket, max_image_bytes: int = 5 * 1024 * 1024):
        self.storage = storage
        self.bucket = bucket
        self.max_image_bytes = max_image_bytes

    # --- achievements ---
    @guarded("loading achievements")
    def list(self) -> List[Achievement]:
        return [Achievement.from_dict(r) for r in self.storage.list_achievements()]

    @guarded("loading achievement")
    def get(self, aid: str) -> Achievement:
        row = self.storage.get_achievement(aid)
        if row is None:
            raise NotFoundError(f"Achievement {aid} not found")
        return Achievement.from_dict(row)

    def _validated(self, payload: Dict[str, Any], keep_category: Optional[str] = None) -> Dict[str, Any]:
        category_ids = [c["id"] for c in self.storage.list_categories()]
        if keep_category:
            # a card may keep a category that has since been deleted
            category_ids.append(keep_category)
        errors, cleaned = validate_achievement(payload, category_ids)
        if errors:
            raise ValidationError("Please fill in the required fields", errors)
        return cleaned

    @contextmanager
    def _restoring_images(self):
        """Yields an upload function; objects it wrote are put back if the block raises."""
        saved = []

        def upload(key: str, data: bytes) -> str:
            saved.append((key, self.bucket.read(key)))
            return self.bucket.upload(key, data, upsert=True)
        try:
            yield upload
        except Exception:
            for key, previous in reversed(saved):
                try:
                    if previous is None:
                        self.bucket.remove([key])
                    else:
                        self.bucket.upload(key, previous, upsert=True)
                except StorageError:
                    log.warning("Could not restore image %s", key)
            raise

    @guarded("adding achievement")
    def add(self, achievement: Union[Achievement, Dict[str, Any]]) -> Achievement:
        payload = achievement.to_dict() if isinstance(achievement, Achievement) else dict(achievement)
        cleaned = self._validated(payload)
        existing = [r["id"] for r in self.storage.list_achievements()]
        cleaned["id"] = ensure_unique_id(cleaned["id"], existing)
        cleaned.pop("version", None)
        with self._restoring_images() as upload:
            cleaned["image"] = self._store_image(cleaned["id"], cleaned["image"], upload)
            row = self.storage.insert_achievement(cleaned)
        log.info("Achievement %s added", cleaned["id"])
        return Achievement.from_dict(row)

    @guarded("updating achievement")
    def update(self, achievement: Union[Achievement, Dict[str, Any]]) -> Achievement:
        payload = achievement.to_dict() if isinstance(achievement, Achievement) else dict(achievement)
        aid = str(payload.get("id") or "").strip()
        current = self.storage.get_achievement(aid) if aid else None
        if current is None:
            raise NotFoundError(f"Achievement {aid or '(no id)'} not found")
        cleaned = self._validated(payload, keep_category=current.get("category"))
        expected = cleaned.pop("version")
        _check_version(current, expected)
        with self._restoring_images() as upload:
            cleaned["image"] = self._store_image(aid, cleaned["image"] or current.get("image"), upload)
            row = self.storage.update_achievement(cleaned, expected_version=expected)
            if row is None:
                raise NotFoundError(f"Achievement {aid} not found")
        log.info("Achievement %s updated (v%s)", aid, row.get("version"))
        return Achievement.from_dict(row)

    @guarded("removing achievement")
    def remove(self, aid: str) -> None:
        current = self.storage.get_achievement(aid)
        if current is None:
            raise NotFoundError(f"Achievement {aid} not found")
        key = self.bucket.key_from_url(current.get("image"))
        if key:
            try:
                self.bucket.remove([key])
            except StorageError:
                # the row goes regardless; an orphaned object is harmless
                log.warning("Could not remove image %s of achievement %s", key, aid)
        self.storage.delete_achievement(aid)
        log.info("Achievement %s removed", aid)

    @guarded("updating achievement image")
    def set_image(self, aid: str, image: Union[ImageFile, str], version: Optional[int] = None) -> Achievement:
        current = self.storage.get_achievement(aid)
        if current is None:
            raise NotFoundError(f"Achievement {aid} not found")
        _check_version(current, version)
        with self._restoring_images() as upload:
            if isinstance(image, ImageFile):
                check_image(image.data, image.content_type, self.max_image_bytes)
                url = upload(f"achievement-{aid}.{ext_for(image.content_type, image.filename)}", image.data)
            else:
                url = self._store_image(aid, image, upload)
            row = dict(Achievement.from_dict(current).to_dict(), image=url)
            updated = self.storage.update_achievement(row, expected_version=version)
            if updated is None:
                raise NotFoundError(f"Achievement {aid} not found")
        return Achievement.from_dict(updated)

    def _store_image(self, aid: str, image: Optional[str], upload: Callable[[str, bytes], str]) -> str:
        image = (image or "").strip()
        if not image:
            return PLACEHOLDER_IMAGE
        if image.startswith("blob:"):
            # browser-local handles mean nothing to other clients
            raise ValidationError("Image must be uploaded", {"image": "Upload the file instead of a blob: URL."})
        if image.startswith("data:"):
            data, mime = decode_data_uri(image)
            check_image(data, mime, self.max_image_bytes)
            return upload(f"achievement-{aid}.{ext_for(mime)}", data)
        return image

    # --- categories ---
    @guarded("loading categories")
    def list_categories(self) -> List[Category]:
        return [Category.from_dict(c) for c in self.storage.list_categories()]

    @guarded("saving category")
    def save_category(self, payload: Dict[str, Any], create: bool = True) -> Category:
        errors, cleaned = validate_category(payload)
        if errors:
            raise ValidationError("Please fill in the required fields", errors)
        if cleaned["id"] == ALL_CATEGORY:
            raise PermissionDeniedError("The default category cannot be changed")
        exists = any(c["id"] == cleaned["id"] for c in self.storage.list_categories())
        if create and exists:
            raise ValidationError("Duplicate category", {"id": "A category with this id already exists."})
        if not create and not exists:
            raise NotFoundError(f"Category {cleaned['id']} not found")
        return Category.from_dict(self.storage.upsert_category(cleaned))

    @guarded("removing category")
    def delete_category(self, cid: str) -> None:
        if cid == ALL_CATEGORY:
            raise PermissionDeniedError("The default category cannot be removed")
        if not self.storage.delete_category(cid):
            raise NotFoundError(f"Category {cid} not found")

    def list_rarities(self) -> List[Rarity]:
        return list(RARITIES)
