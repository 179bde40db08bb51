# /conquistas/services/logic.py
"""
Gallery logic shared by routes:
- Bundled seed dataset (achievements, categories, rarities)
- Filtering by category / search / unlock state
- Admin form validation + id repair
- Card view model (rarity colors, lock overlay)
"""

import uuid
from typing import List, Dict, Any, Tuple, Iterable

from services.models import Achievement, Category, Rarity, ALL_CATEGORY, PLACEHOLDER_IMAGE

# --- Rarities (fixed, drives card styling) ---
RARITIES = [
    Rarity("common", "Common", "bg-rarity-common"),
    Rarity("uncommon", "Uncommon", "bg-rarity-uncommon"),
    Rarity("rare", "Rare", "bg-rarity-rare"),
    Rarity("epic", "Epic", "bg-rarity-epic"),
    Rarity("legendary", "Legendary", "bg-rarity-legendary"),
]
RARITY_IDS = [r.id for r in RARITIES]
_RARITY_BY_ID = {r.id: r for r in RARITIES}

# --- Categories ("all" is the no-filter pseudo category) ---
DEFAULT_CATEGORIES = [
    Category(ALL_CATEGORY, "All"),
    Category("building", "Building"),
    Category("redstone", "Redstone"),
    Category("decoration", "Decoration"),
    Category("landscape", "Landscape"),
    Category("megaproject", "Megaprojects"),
]

# --- Seed achievements ---
# (id, title, rarity, category, description, requirements, reward, unlocked)
_SEED = [
    ("first-house", "Home Sweet Home", "common", "building",
     "Build your first house with somewhere to sleep, storage and crafting.",
     "Build a house with a bed, a chest and a crafting table",
     "Unlocks basic house templates", True),
    ("village-renovation", "Village Architect", "uncommon", "building",
     "Completely renovate a village with at least 5 houses in your own style.",
     "Renovate 5 structures in one village",
     "Unlocks village decorations", False),
    ("redstone-genius", "Redstone Engineer", "rare", "redstone",
     "Create a complex redstone contraption that uses at least 3 different components.",
     "Use pistons, repeaters and comparators in a single mechanism",
     "Unlocks advanced redstone projects", False),
    ("garden-master", "Landscaper", "uncommon", "decoration",
     "Create a garden with at least 8 different kinds of plants and flowers.",
     "Use 8 kinds of plants in one garden",
     "Unlocks landscaping designs", False),
    ("castle-creator", "Impressive Castle", "epic", "megaproject",
     "Build a complete castle with walls, towers and a moat.",
     "Build a castle with at least 4 towers and a closed wall",
     "Unlocks medieval structure designs", False),
    ("modern-architect", "Modern Architect", "rare", "building",
     "Build a modern house using glass, concrete and contemporary lighting.",
     "Use concrete blocks and at least 20 glass blocks",
     "Unlocks modern designs", False),
    ("bridge-builder", "Bridge Engineer", "rare", "landscape",
     "Build an impressive bridge connecting two areas at least 30 blocks apart.",
     "Bridge at least 30 blocks long",
     "Unlocks bridge designs", False),
    ("pixel-artist", "Pixel Artist", "uncommon", "decoration",
     "Create block pixel art of at least 16x16.",
     "Pixel art of at least 16x16 blocks",
     "Unlocks pixel art samples", False),
    ("skyscraper", "Skyscraper", "epic", "megaproject",
     "Build a building at least 50 blocks tall with decorated interiors.",
     "Building of 50+ blocks with working interiors",
     "Unlocks skyscraper designs", False),
    ("farm-designer", "Master Farmer", "rare", "redstone",
     "Create an automated farm that harvests at least 3 kinds of crops.",
     "Automatic farm for 3+ crops",
     "Unlocks automated farm designs", False),
    ("underwater-base", "Atlantis", "epic", "megaproject",
     "Build a fully working and decorated underwater base.",
     "Underwater base with at least 5 rooms",
     "Unlocks underwater designs", False),
    ("ultimate-builder", "Master Builder", "legendary", "megaproject",
     "Complete every other building achievement to prove your mastery.",
     "Unlock every other achievement",
     "Exclusive Master Builder title", False),
]


def seed_achievements() -> List[Achievement]:
    # fresh objects every call; callers mutate them
    return [
        Achievement(id=i, title=t, description=d, rarity=r, category=c,
                    image=PLACEHOLDER_IMAGE, requirements=req, reward=rew, unlocked=u)
        for i, t, r, c, d, req, rew, u in _SEED
    ]


def seed_categories() -> List[Category]:
    return [Category(c.id, c.name) for c in DEFAULT_CATEGORIES]


def rarity_for(rarity_id: str) -> Rarity:
    return _RARITY_BY_ID.get(rarity_id, RARITIES[0])


# --- filtering ---
def filter_achievements(items: List[Achievement],
                        category: str = ALL_CATEGORY,
                        search: str = "",
                        show_unlocked: bool = True,
                        show_locked: bool = True) -> List[Achievement]:
    """
    Linear, order-preserving filter for the card grid.
    category "all" (or empty) means no category filter; search is a
    case-insensitive substring match over title and description.
    """
    out = list(items)
    if category and category != ALL_CATEGORY:
        out = [a for a in out if a.category == category]
    term = (search or "").strip().lower()
    if term:
        out = [a for a in out if term in a.title.lower() or term in a.description.lower()]
    if not show_unlocked:
        out = [a for a in out if not a.unlocked]
    if not show_locked:
        out = [a for a in out if a.unlocked]
    return out


def gallery_stats(items: List[Achievement]) -> Dict[str, int]:
    unlocked = sum(1 for a in items if a.unlocked)
    return {"total": len(items), "unlocked": unlocked, "locked": len(items) - unlocked}


# --- ids ---
def new_id(prefix: str = "achievement") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def ensure_unique_id(candidate: str, existing_ids: Iterable[str], prefix: str = "achievement") -> str:
    """Keep a usable id, otherwise generate one that is not taken."""
    taken = set(existing_ids)
    candidate = (candidate or "").strip()
    if candidate and candidate not in taken:
        return candidate
    nid = new_id(prefix)
    while nid in taken:
        nid = new_id(prefix)
    return nid


# --- validation ---
def _as_bool(v) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "on")
    return bool(v)


def validate_achievement(payload: Dict[str, Any], category_ids: Iterable[str]) -> Tuple[Dict[str, str], Dict[str, Any]]:
    errors = {}
    title = (payload.get("title") or "").strip()
    description = (payload.get("description") or "").strip()
    rarity = (payload.get("rarity") or "common").strip()
    category = (payload.get("category") or "building").strip()
    valid_categories = {c for c in category_ids if c != ALL_CATEGORY}

    if not title:
        errors["title"] = "Title is required."
    if not description:
        errors["description"] = "Description is required."
    if rarity not in RARITY_IDS:
        errors["rarity"] = f"Rarity must be one of {', '.join(RARITY_IDS)}."
    if category not in valid_categories:
        errors["category"] = "Unknown category."

    version = payload.get("version")
    try:
        version = int(version) if version not in (None, "") else None
    except (TypeError, ValueError):
        errors["version"] = "Version must be a number."
        version = None

    cleaned = dict(
        id=str(payload.get("id") or "").strip(),
        title=title,
        description=description,
        rarity=rarity,
        category=category,
        image=(payload.get("image") or "").strip(),
        requirements=(payload.get("requirements") or "").strip(),
        reward=(payload.get("reward") or "").strip(),
        unlocked=_as_bool(payload.get("unlocked", False)),
        version=version,
    )
    return errors, cleaned


def validate_category(payload: Dict[str, Any]) -> Tuple[Dict[str, str], Dict[str, str]]:
    errors = {}
    cid = (payload.get("id") or "").strip().lower()
    name = (payload.get("name") or "").strip()
    if not cid:
        errors["id"] = "Category id is required."
    elif not cid.replace("-", "").replace("_", "").isalnum():
        errors["id"] = "Use letters, digits, '-' or '_'."
    if not name:
        errors["name"] = "Category name is required."
    return errors, {"id": cid, "name": name}


# --- view model ---
def card_view(a: Achievement) -> Dict[str, Any]:
    r = rarity_for(a.rarity)
    out = a.to_dict()
    out.update({
        "rarity_name": r.name,
        "rarity_color": r.color,
        "locked": not a.unlocked,
        "status_label": "unlocked" if a.unlocked else "locked",
    })
    return out
