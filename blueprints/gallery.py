# /conquistas/blueprints/gallery.py
from flask import Blueprint, jsonify, render_template, request, g

from blueprints.sync import current_sync
from services.logic import card_view, filter_achievements, gallery_stats
from services.models import ALL_CATEGORY

bp = Blueprint("gallery", __name__)


def _flag(name: str, default: bool = True) -> bool:
    v = request.args.get(name)
    if v is None:
        return default
    return v.strip().lower() not in ("0", "false", "no", "off")


def _filters():
    return dict(
        category=request.args.get("category") or ALL_CATEGORY,
        search=request.args.get("q", ""),
        show_unlocked=_flag("unlocked"),
        show_locked=_flag("locked"),
    )


@bp.get("/")
def index():
    # the client's cached view, refreshed when the poll interval has passed
    sync = current_sync()
    sync.poll()
    items = sync.achievements
    filters = _filters()
    cards = [card_view(a) for a in filter_achievements(items, **filters)]
    return render_template(
        "index.html",
        cards=cards,
        stats=gallery_stats(items),
        categories=g.catalog.list_categories(),
        filters=filters,
        poll_interval=g.sync_registry.poll_interval,
    )


@bp.get("/achievements/<aid>")
def detail(aid: str):
    a = g.catalog.get(aid)
    return render_template("detail.html", card=card_view(a))


@bp.get("/api/achievements")
def api_list():
    items = filter_achievements(g.catalog.list(), **_filters())
    resp = jsonify({"achievements": [card_view(a) for a in items]})
    # pollers send If-None-Match and get a 304 while nothing changed
    resp.add_etag()
    return resp.make_conditional(request)


@bp.get("/api/achievements/<aid>")
def api_get(aid: str):
    return jsonify({"achievement": card_view(g.catalog.get(aid))})


@bp.get("/api/categories")
def api_categories():
    return jsonify({"categories": [c.to_dict() for c in g.catalog.list_categories()]})


@bp.get("/api/rarities")
def api_rarities():
    return jsonify({"rarities": [r.to_dict() for r in g.catalog.list_rarities()]})
