# /conquistas/blueprints/sync.py
from flask import Blueprint, jsonify, request, g, session

from services.logic import card_view
from services.sync import SyncSession

bp = Blueprint("sync", __name__)


def current_sync() -> SyncSession:
    if "sync" not in g:
        if g.get("token_user"):
            # API clients often send no cookie; one session per account
            g.sync = g.sync_registry.get(f"user-{g.user.id}")
        elif g.get("new_client"):
            # first contact: nothing to carry over to a next request yet
            g.sync = g.sync_registry.transient()
        else:
            g.sync = g.sync_registry.get(session["client_id"])
    return g.sync


@bp.get("/api/sync")
def poll():
    """Poll this client's view: {changed, pending, revision, achievements}."""
    s = current_sync()
    known = request.args.get("revision", type=int)
    changed = s.poll(force=request.args.get("force") == "1")
    snap = s.snapshot()
    if known is not None and known != snap["revision"]:
        changed = True
    return jsonify({
        "changed": changed,
        "pending": snap["pending"],
        "revision": snap["revision"],
        "poll_interval": s.poll_interval,
        "achievements": [card_view(a) for a in snap["achievements"]],
    })
