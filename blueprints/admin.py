# /conquistas/blueprints/admin.py
from flask import Blueprint, jsonify, request, g, render_template

from blueprints.auth import admin_required
from blueprints.sync import current_sync
from services.catalog import ImageFile
from services.errors import ValidationError
from services.logic import card_view

bp = Blueprint("admin", __name__)


def _expected_version(payload):
    """Version from the body, else from an If-Match header."""
    if payload.get("version") not in (None, ""):
        return payload["version"]
    if request.if_match and not request.if_match.star_tag:
        tags = list(request.if_match.as_set())
        if tags:
            return tags[0]
    return None


def _uploaded_file(field: str = "file"):
    f = request.files.get(field)
    if f is None or not f.filename:
        return None
    return ImageFile(f.filename, f.read(), f.mimetype)


def _status():
    s = current_sync()
    return {"pending": s.has_pending_changes(), "revision": s.revision}


@bp.get("/admin")
@admin_required
def dashboard():
    s = current_sync()
    if not s.has_pending_changes():
        s.poll(force=True)
    return render_template(
        "admin.html",
        cards=[card_view(a) for a in s.achievements],
        categories=g.catalog.list_categories(),
        rarities=g.catalog.list_rarities(),
        images=g.library.list(),
        pending=s.has_pending_changes(),
    )


@bp.get("/api/admin/status")
@admin_required
def status():
    return jsonify(_status())


# --- achievements ---
@bp.post("/api/admin/achievements")
@admin_required
def add_achievement():
    payload = request.get_json(force=True, silent=True) or {}
    a = current_sync().add(payload)
    return jsonify({"ok": True, "achievement": a.to_dict(), **_status()}), 201


@bp.put("/api/admin/achievements/<aid>")
@admin_required
def update_achievement(aid: str):
    payload = request.get_json(force=True, silent=True) or {}
    payload["id"] = aid
    payload["version"] = _expected_version(payload)
    a = current_sync().update(payload)
    resp = jsonify({"ok": True, "achievement": a.to_dict(), **_status()})
    resp.set_etag(str(a.version))
    return resp


@bp.delete("/api/admin/achievements/<aid>")
@admin_required
def delete_achievement(aid: str):
    current_sync().remove(aid)
    return jsonify({"ok": True, **_status()})


@bp.put("/api/admin/achievements/<aid>/image")
@admin_required
def set_achievement_image(aid: str):
    upload = _uploaded_file()
    if upload is not None:
        image, version = upload, request.form.get("version")
    else:
        payload = request.get_json(force=True, silent=True) or {}
        image, version = payload.get("image"), _expected_version(payload)
        if not image:
            raise ValidationError("No image given", {"image": "Send a file or an image URL."})
    try:
        version = int(version) if version not in (None, "") else None
    except (TypeError, ValueError):
        raise ValidationError("Version must be a number", {"version": "Version must be a number."})
    a = current_sync().set_image(aid, image, version=version)
    return jsonify({"ok": True, "achievement": a.to_dict(), **_status()})


@bp.post("/api/admin/confirm")
@admin_required
def confirm_changes():
    revision = current_sync().confirm_changes()
    return jsonify({"ok": True, "revision": revision, "pending": False})


# --- categories ---
@bp.post("/api/admin/categories")
@admin_required
def add_category():
    payload = request.get_json(force=True, silent=True) or {}
    c = g.catalog.save_category(payload, create=True)
    return jsonify({"ok": True, "category": c.to_dict()}), 201


@bp.put("/api/admin/categories/<cid>")
@admin_required
def rename_category(cid: str):
    payload = request.get_json(force=True, silent=True) or {}
    payload["id"] = cid
    c = g.catalog.save_category(payload, create=False)
    return jsonify({"ok": True, "category": c.to_dict()})


@bp.delete("/api/admin/categories/<cid>")
@admin_required
def delete_category(cid: str):
    g.catalog.delete_category(cid)
    return jsonify({"ok": True})


# --- image library ---
@bp.get("/api/admin/images")
@admin_required
def list_images():
    return jsonify({"images": [i.to_dict() for i in g.library.list()]})


@bp.post("/api/admin/images")
@admin_required
def upload_image():
    upload = _uploaded_file()
    if upload is None:
        raise ValidationError("No file uploaded", {"file": "Choose an image to upload."})
    img = g.library.add(upload.filename, upload.data, upload.content_type)
    return jsonify({"ok": True, "image": img.to_dict()}), 201


@bp.delete("/api/admin/images/<iid>")
@admin_required
def delete_image(iid: str):
    g.library.delete(iid)
    return jsonify({"ok": True})
