# /conquistas/services/gallery.py
"""Standalone media library: uploaded images admins can reuse on cards."""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from services.bucket import ImageBucket, ext_for
from services.catalog import check_image
from services.errors import NotFoundError, StorageError, guarded
from services.models import GalleryImage

log = logging.getLogger(__name__)


class ImageLibrary:
    def __init__(self, storage, bucket: ImageBucket, max_image_bytes: int = 5 * 1024 * 1024):
        self.storage = storage
        self.bucket = bucket
        self.max_image_bytes = max_image_bytes

    @guarded("loading images")
    def list(self) -> List[GalleryImage]:
        return [GalleryImage.from_dict(r) for r in self.storage.list_images()]

    @guarded("saving image")
    def add(self, filename: str, data: bytes, content_type: Optional[str]) -> GalleryImage:
        check_image(data, content_type, self.max_image_bytes)
        iid = f"image-{uuid.uuid4().hex[:12]}"
        url = self.bucket.upload(f"{iid}.{ext_for(content_type, filename)}", data, upsert=False)
        img = GalleryImage(
            id=iid,
            name=filename or iid,
            url=url,
            created_at=datetime.now(timezone.utc).isoformat(),
            size=len(data),
        )
        try:
            self.storage.insert_image(img.to_dict())
        except Exception as e:
            # no row, no object
            self.bucket.remove([self.bucket.key_from_url(url)])
            log.exception("Error saving library image %s", iid)
            raise StorageError("Error saving image") from e
        log.info("Library image %s uploaded (%d bytes)", iid, img.size)
        return img

    @guarded("removing image")
    def delete(self, iid: str) -> None:
        row = self.storage.get_image(iid)
        if row is None:
            raise NotFoundError(f"Image {iid} not found")
        self.storage.delete_image(iid)
        key = self.bucket.key_from_url(row.get("url"))
        if key:
            try:
                self.bucket.remove([key])
            except StorageError:
                log.warning("Could not remove object %s for image %s", key, iid)
