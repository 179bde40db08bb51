# /conquistas/blueprints/media.py
from flask import Blueprint, abort, current_app, send_from_directory

from services.bucket import safe_key
from services.errors import ValidationError

bp = Blueprint("media", __name__)


@bp.get("/uploads/<key>")
def uploaded(key: str):
    try:
        key = safe_key(key)
    except ValidationError:
        abort(404)
    bucket = current_app.config["BUCKET"]
    # bucket keys are upserted in place; let clients revalidate
    return send_from_directory(bucket.root, key, max_age=0)
