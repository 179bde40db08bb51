# /conquistas/blueprints/health.py
from flask import Blueprint, jsonify, g

bp = Blueprint("health", __name__)


@bp.get("/healthz")
def healthz():
    # Quick liveness + storage mode + published revision
    mode = getattr(g, "storage_mode", "unknown")
    try:
        revision = g.storage.get_revision()
        ok = True
    except Exception:
        # unhealthy is the answer here, not an error page
        revision, ok = None, False
    return jsonify({"ok": ok, "storage": mode, "revision": revision}), (200 if ok else 503)
