import base64

import pytest

from services.catalog import ImageFile
from services.errors import (
    ConflictError, NotFoundError, PermissionDeniedError, StorageError, ValidationError,
)
from services.models import PLACEHOLDER_IMAGE

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _payload(**kw):
    p = {"title": "Sky Island", "description": "Float a base in the sky", "rarity": "epic",
         "category": "landscape", "requirements": "Build above y=200", "reward": "Elytra"}
    p.update(kw)
    return p


def test_add_without_id_generates_unique_id(catalog):
    before = {a.id for a in catalog.list()}
    created = catalog.add(_payload())
    assert created.id
    assert created.id not in before
    ids = [a.id for a in catalog.list()]
    assert ids.count(created.id) == 1


def test_add_with_taken_id_is_repaired(catalog):
    created = catalog.add(_payload(id="first-house"))
    assert created.id != "first-house"
    assert len({a.id for a in catalog.list()}) == len(catalog.list())


def test_add_requires_title_and_description(catalog):
    before = catalog.list()
    with pytest.raises(ValidationError) as exc:
        catalog.add(_payload(title="", description=""))
    assert set(exc.value.errors) == {"title", "description"}
    assert catalog.list() == before


def test_add_defaults_to_placeholder_image(catalog):
    assert catalog.add(_payload()).image == PLACEHOLDER_IMAGE


def test_data_uri_image_is_uploaded_to_bucket(catalog, bucket):
    uri = "data:image/png;base64," + base64.b64encode(PNG).decode()
    created = catalog.add(_payload(id="sky", image=uri))
    assert created.image == "/uploads/achievement-sky.png"
    assert (bucket.root / "achievement-sky.png").read_bytes() == PNG


def test_blob_uri_is_rejected(catalog):
    with pytest.raises(ValidationError):
        catalog.add(_payload(image="blob:http://localhost/1234"))


def test_update_checks_version(catalog):
    a = catalog.get("redstone-genius")
    updated = catalog.update(dict(a.to_dict(), unlocked=True))
    assert updated.unlocked is True
    assert updated.version == a.version + 1
    with pytest.raises(ConflictError):
        catalog.update(dict(a.to_dict(), title="stale"))
    assert catalog.get("redstone-genius").title == updated.title


def test_update_unknown_id(catalog):
    with pytest.raises(NotFoundError):
        catalog.update(_payload(id="ghost"))


def test_set_image_with_file(catalog, bucket):
    a = catalog.set_image("first-house", ImageFile("house.PNG", PNG, "image/png"))
    assert a.image == "/uploads/achievement-first-house.png"
    assert (bucket.root / "achievement-first-house.png").exists()


def test_set_image_too_large(catalog):
    with pytest.raises(ValidationError):
        catalog.set_image("first-house", ImageFile("big.png", b"x" * 2048, "image/png"))


def test_set_image_rejects_non_images(catalog):
    with pytest.raises(ValidationError):
        catalog.set_image("first-house", ImageFile("notes.txt", b"hello", "text/plain"))


def test_set_image_with_url(catalog):
    a = catalog.set_image("first-house", "https://cdn.example.com/house.png")
    assert a.image == "https://cdn.example.com/house.png"


def test_remove_deletes_row_and_object(catalog, bucket):
    catalog.set_image("first-house", ImageFile("house.png", PNG, "image/png"))
    catalog.remove("first-house")
    assert "first-house" not in [a.id for a in catalog.list()]
    assert not (bucket.root / "achievement-first-house.png").exists()


def test_remove_survives_bucket_failure(catalog, bucket, monkeypatch):
    catalog.set_image("first-house", ImageFile("house.png", PNG, "image/png"))

    def boom(keys):
        raise StorageError("bucket down")
    monkeypatch.setattr(bucket, "remove", boom)
    catalog.remove("first-house")
    assert "first-house" not in [a.id for a in catalog.list()]


def test_backend_failure_becomes_storage_error(catalog, monkeypatch):
    before = catalog.list()

    def boom(row):
        raise RuntimeError("connection reset")
    monkeypatch.setattr(catalog.storage, "insert_achievement", boom)
    with pytest.raises(StorageError):
        catalog.add(_payload())
    assert catalog.list() == before


def test_delete_all_category_is_rejected(catalog):
    with pytest.raises(PermissionDeniedError):
        catalog.delete_category("all")
    assert "all" in [c.id for c in catalog.list_categories()]


def test_delete_category_removes_exactly_one(catalog):
    before = [c.id for c in catalog.list_categories()]
    catalog.delete_category("landscape")
    after = [c.id for c in catalog.list_categories()]
    assert sorted(after) == sorted(c for c in before if c != "landscape")


def test_delete_unknown_category(catalog):
    with pytest.raises(NotFoundError):
        catalog.delete_category("nether")


def test_save_category_add_and_rename(catalog):
    catalog.save_category({"id": "nether", "name": "Nether"})
    with pytest.raises(ValidationError):
        catalog.save_category({"id": "nether", "name": "Again"})
    renamed = catalog.save_category({"id": "nether", "name": "Nether builds"}, create=False)
    assert renamed.name == "Nether builds"
    with pytest.raises(PermissionDeniedError):
        catalog.save_category({"id": "all", "name": "Everything"}, create=False)


def test_rarities_are_fixed(catalog):
    assert [r.id for r in catalog.list_rarities()] == ["common", "uncommon", "rare", "epic", "legendary"]


PNG_B = b"\x89PNG\r\n\x1a\n" + b"B" * 32


def _data_uri(data):
    return "data:image/png;base64," + base64.b64encode(data).decode()


def test_stale_update_leaves_stored_image_untouched(catalog, bucket):
    catalog.add(_payload(id="sky", image=_data_uri(PNG)))
    stale = catalog.get("sky")
    catalog.update(dict(stale.to_dict(), reward="Wings"))
    with pytest.raises(ConflictError):
        catalog.update(dict(stale.to_dict(), image=_data_uri(PNG_B)))
    assert (bucket.root / "achievement-sky.png").read_bytes() == PNG


def test_stale_set_image_leaves_stored_image_untouched(catalog, bucket):
    catalog.add(_payload(id="sky", image=_data_uri(PNG)))
    catalog.set_image("sky", ImageFile("a.png", PNG, "image/png"), version=1)
    with pytest.raises(ConflictError):
        catalog.set_image("sky", ImageFile("b.png", PNG_B, "image/png"), version=1)
    assert (bucket.root / "achievement-sky.png").read_bytes() == PNG
    assert catalog.get("sky").version == 2


def test_image_is_restored_when_row_write_loses_race(catalog, bucket, monkeypatch):
    catalog.add(_payload(id="sky", image=_data_uri(PNG)))
    current = catalog.get("sky")

    def raced(row, expected_version=None):
        raise ConflictError("changed by someone else")
    monkeypatch.setattr(catalog.storage, "update_achievement", raced)
    with pytest.raises(ConflictError):
        catalog.update(dict(current.to_dict(), image=_data_uri(PNG_B)))
    assert (bucket.root / "achievement-sky.png").read_bytes() == PNG


def test_uploaded_object_is_removed_when_insert_fails(catalog, bucket, monkeypatch):
    def boom(row):
        raise RuntimeError("connection reset")
    monkeypatch.setattr(catalog.storage, "insert_achievement", boom)
    with pytest.raises(StorageError):
        catalog.add(_payload(id="sky", image=_data_uri(PNG)))
    assert not (bucket.root / "achievement-sky.png").exists()


def test_card_keeps_deleted_category_on_update(catalog):
    catalog.delete_category("landscape")
    card = catalog.get("bridge-builder")
    updated = catalog.update(dict(card.to_dict(), unlocked=True))
    assert updated.unlocked is True
    assert updated.category == "landscape"
    with pytest.raises(ValidationError):
        catalog.add(_payload(category="landscape"))
