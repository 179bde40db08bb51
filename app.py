# /conquistas/app.py
"""
MC Conquistas: Flask gallery + admin dashboard for Minecraft building achievements.

- App factory that selects storage backend:
    * PostgreSQL via SQLAlchemy Core (preferred)
    * JSON file fallback, fully transparent to the UI
- Images go to a filesystem bucket served under /uploads.
- Registers blueprints for gallery, sync, admin, auth, media and health.
- Every client gets a SyncSession (cached list + pending-changes flag).
"""

import logging
import os
import uuid

import click
from flask import Flask, flash, g, jsonify, redirect, render_template, request, session, url_for

from config import Config, flask_config

# Storage adapters (both expose the same interface)
from services.db import PostgresAdapter, StorageUnavailableError
from services.json_store import JSONAdapter, ensure_data_dir

from services.auth import AuthService
from services.bucket import ImageBucket
from services.catalog import AchievementCatalog
from services.errors import ConquistasError, NotFoundError
from services.gallery import ImageLibrary
from services.sync import ChangeBus, SessionRegistry

# Blueprints
from blueprints.gallery import bp as gallery_bp
from blueprints.sync import bp as sync_bp
from blueprints.admin import bp as admin_bp
from blueprints.auth import bp as auth_bp, load_current_user
from blueprints.media import bp as media_bp
from blueprints.health import bp as health_bp

log = logging.getLogger(__name__)


def _pick_storage(config: Config):
    """
    Select storage backend based on env + availability.
    Returns (adapter_instance, mode_str)
    """
    storage_mode = (config.CONQUISTAS_STORAGE or "auto").lower()
    db_url = config.DATABASE_URL

    # Force JSON (dev convenience)
    if storage_mode == "json":
        ensure_data_dir(config.DATA_DIR)
        return JSONAdapter(config.DATA_PATH), "json"

    # Force PG if asked
    if storage_mode == "pgsql":
        try:
            pg = PostgresAdapter(db_url)
            pg.ensure_schema()
            return pg, "pgsql"
        except StorageUnavailableError as e:
            # Forced but down: keep the gallery up on the JSON file anyway.
            log.warning("PG forced but unavailable: %s. Falling back to JSON.", e)
            ensure_data_dir(config.DATA_DIR)
            return JSONAdapter(config.DATA_PATH), "json"

    # AUTO mode: try PG first, then JSON
    if db_url:
        try:
            pg = PostgresAdapter(db_url)
            pg.ensure_schema()
            return pg, "pgsql"
        except StorageUnavailableError as e:
            log.warning("PG unavailable: %s. Using JSON fallback.", e)
    ensure_data_dir(config.DATA_DIR)
    return JSONAdapter(config.DATA_PATH), "json"


def _is_api() -> bool:
    return request.path.startswith("/api/")


def create_app(config: Config = None) -> Flask:
    app = Flask(__name__, static_folder="static", template_folder="templates")
    app.config.from_mapping(flask_config(config))
    cfg: Config = app.config["CONFIG"]

    logging.basicConfig(level=getattr(logging, cfg.LOG_LEVEL, logging.INFO),
                        format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    # Secret key (fallback if not provided)
    if not app.config.get("SECRET_KEY"):
        log.warning("SECRET_KEY not set; sessions and tokens will not survive a restart")
        app.config["SECRET_KEY"] = os.urandom(32).hex()

    # Storage selection
    adapter, mode = _pick_storage(cfg)
    bucket = ImageBucket(cfg.UPLOAD_DIR, cfg.PUBLIC_BASE_URL)
    catalog = AchievementCatalog(adapter, bucket, cfg.MAX_IMAGE_BYTES)
    app.config["STORAGE_MODE"] = mode
    app.config["STORAGE"] = adapter
    app.config["BUCKET"] = bucket
    app.config["CATALOG"] = catalog
    app.config["LIBRARY"] = ImageLibrary(adapter, bucket, cfg.MAX_IMAGE_BYTES)
    app.config["AUTH"] = AuthService(adapter, app.config["SECRET_KEY"], cfg.ADMIN_EMAILS, cfg.TOKEN_TTL_MINUTES)
    app.config["SYNC_REGISTRY"] = SessionRegistry(
        catalog, ChangeBus(), cfg.POLL_INTERVAL, idle_ttl=cfg.SYNC_IDLE_TTL, max_sessions=cfg.MAX_SYNC_SESSIONS)
    log.info("Storage: %s, uploads in %s", mode, cfg.UPLOAD_DIR)

    # Register blueprints
    app.register_blueprint(gallery_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(media_bp)
    app.register_blueprint(health_bp)

    @app.before_request
    def attach_services():
        # Attach services to g for request lifecycle
        g.storage = app.config["STORAGE"]
        g.storage_mode = app.config["STORAGE_MODE"]
        g.catalog = app.config["CATALOG"]
        g.library = app.config["LIBRARY"]
        g.auth = app.config["AUTH"]
        g.sync_registry = app.config["SYNC_REGISTRY"]

        # one SyncSession per browser session
        g.new_client = "client_id" not in session
        if g.new_client:
            session["client_id"] = uuid.uuid4().hex
        load_current_user()

    @app.context_processor
    def inject_user():
        return {"current_user": getattr(g, "user", None), "storage_mode": getattr(g, "storage_mode", None)}

    @app.errorhandler(ConquistasError)
    def domain_error(e: ConquistasError):
        if _is_api():
            return jsonify(e.to_dict()), e.status
        if isinstance(e, NotFoundError) or request.method == "GET":
            # a redirect back to a failing page would loop
            return render_template("error.html", code=e.status, message=e.message), e.status
        # HTML forms: show a notification and keep the previous state
        flash(e.message, "error")
        for msg in e.errors.values():
            flash(msg, "error")
        return redirect(request.referrer or url_for("gallery.index"))

    @app.errorhandler(404)
    def not_found(_e):
        if _is_api():
            return jsonify({"ok": False, "error": "Not found"}), 404
        return render_template("error.html", code=404, message="Oops, wrong turn!"), 404

    @app.errorhandler(500)
    def server_error(_e):
        # Avoid leaking internals; show friendly page
        if _is_api():
            return jsonify({"ok": False, "error": "Internal error"}), 500
        return render_template("error.html", code=500, message="Something broke. A creeper, probably."), 500

    @app.cli.command("promote-admin")
    @click.argument("email")
    @click.option("--revoke", is_flag=True, help="Remove the admin role instead.")
    def promote_admin(email, revoke):
        """Grant (or revoke) the admin role for EMAIL."""
        try:
            user = app.config["AUTH"].set_admin(email, not revoke)
        except NotFoundError as e:
            raise click.ClickException(e.message)
        click.echo(f"{user.email}: admin={user.is_admin}")

    return app


if __name__ == "__main__":
    # Local dev run; production: gunicorn "app:create_app()"
    port = int(os.environ.get("PORT", "5050"))
    create_app().run(host="0.0.0.0", port=port, debug=True)
