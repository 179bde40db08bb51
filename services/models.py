# /conquistas/services/models.py
"""
Plain records for the gallery: achievements (cards), categories, rarities,
library images and users. Storage adapters speak dicts; services convert at
the boundary with to_dict()/from_dict().
"""

from dataclasses import dataclass, asdict, fields
from typing import Dict, Any, Optional

PLACEHOLDER_IMAGE = "/static/placeholder.svg"
ALL_CATEGORY = "all"


def _known(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class Achievement:
    id: str
    title: str
    description: str
    rarity: str = "common"
    category: str = "building"
    image: str = PLACEHOLDER_IMAGE
    requirements: str = ""
    reward: str = ""
    unlocked: bool = False
    version: int = 1
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Achievement":
        data = dict(data)
        # SQL rows name the column image_path
        if "image" not in data and "image_path" in data:
            data["image"] = data["image_path"]
        a = cls(**_known(cls, data))
        a.id = str(a.id or "")
        a.image = a.image or PLACEHOLDER_IMAGE
        a.unlocked = bool(a.unlocked)
        a.version = int(a.version or 1)
        a.requirements = a.requirements or ""
        a.reward = a.reward or ""
        a.description = a.description or ""
        for ts in ("created_at", "updated_at"):
            v = getattr(a, ts)
            if v is not None and not isinstance(v, str):
                setattr(a, ts, v.isoformat())
        return a

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Category:
    id: str
    name: str

    @property
    def reserved(self) -> bool:
        return self.id == ALL_CATEGORY

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Category":
        return cls(**_known(cls, data))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Rarity:
    id: str
    name: str
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GalleryImage:
    id: str
    name: str
    url: str
    created_at: str
    size: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GalleryImage":
        img = cls(**_known(cls, data))
        if img.created_at is not None and not isinstance(img.created_at, str):
            img.created_at = img.created_at.isoformat()
        img.size = int(img.size or 0)
        return img

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class User:
    id: str
    username: str
    email: str
    is_admin: bool = False
    password_hash: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        u = cls(**_known(cls, data))
        u.is_admin = bool(u.is_admin)
        return u

    def to_dict(self) -> Dict[str, Any]:
        # never leaves the server with the hash
        return {"id": self.id, "username": self.username, "email": self.email, "is_admin": self.is_admin}
