# /conquistas/blueprints/auth.py
from functools import wraps

from flask import Blueprint, jsonify, request, g, render_template, redirect, url_for, session, flash

from services.errors import AuthError, ConquistasError, PermissionDeniedError

bp = Blueprint("auth", __name__)


def _bearer_token():
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


def load_current_user():
    """Resolve g.user from a bearer token or the cookie session."""
    g.user = None
    g.token_user = False
    token = _bearer_token()
    if token:
        try:
            g.user = g.auth.user_from_token(token)
            g.token_user = True
        except AuthError:
            # a bad token on an API call is an error, not an anonymous request
            if request.path.startswith("/api/"):
                raise
        return
    uid = session.get("user_id")
    if uid:
        g.user = g.auth.get_user(uid)
        if g.user is None:
            session.pop("user_id", None)


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if g.user is None:
            if request.path.startswith("/api/"):
                raise AuthError("Login required")
            flash("Please log in first.", "info")
            return redirect(url_for("auth.page", next=request.path))
        return fn(*args, **kwargs)
    return wrapper


def admin_required(fn):
    @wraps(fn)
    @login_required
    def wrapper(*args, **kwargs):
        if not g.user.is_admin:
            if request.path.startswith("/api/"):
                raise PermissionDeniedError("Admin access required")
            flash("You do not have access to the admin panel.", "error")
            return redirect(url_for("gallery.index"))
        return fn(*args, **kwargs)
    return wrapper


def _start_session(user):
    session["user_id"] = user.id


def _after_login_target(user):
    nxt = request.args.get("next") or request.form.get("next")
    if nxt and nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return url_for("admin.dashboard") if user.is_admin else url_for("gallery.index")


# --- pages ---
@bp.get("/auth")
def page():
    if g.user is not None:
        return redirect(_after_login_target(g.user))
    return render_template("auth.html", next=request.args.get("next", ""))


@bp.post("/auth/login")
def login_form():
    try:
        user = g.auth.login(request.form.get("email"), request.form.get("password"))
    except AuthError as e:
        flash(e.message, "error")
        return redirect(url_for("auth.page", next=request.form.get("next", "")))
    _start_session(user)
    flash(f"Welcome back, {user.username}!", "success")
    return redirect(_after_login_target(user))


@bp.post("/auth/register")
def register_form():
    try:
        user = g.auth.register(request.form.get("username"), request.form.get("email"),
                               request.form.get("password"))
    except ConquistasError as e:
        flash(e.message, "error")
        for msg in e.errors.values():
            flash(msg, "error")
        return redirect(url_for("auth.page"))
    _start_session(user)
    flash("Account created!", "success")
    return redirect(_after_login_target(user))


@bp.route("/auth/logout", methods=["GET", "POST"])
def logout():
    session.pop("user_id", None)
    g.sync_registry.discard(session.get("client_id", ""))
    flash("Logged out.", "info")
    return redirect(url_for("gallery.index"))


@bp.get("/profile")
@login_required
def profile_page():
    return render_template("profile.html", user=g.user)


@bp.post("/profile")
@login_required
def save_profile():
    new_password = request.form.get("new_password") or None
    if new_password and new_password != request.form.get("confirm_password"):
        flash("Passwords do not match.", "error")
        return redirect(url_for("auth.profile_page"))
    g.auth.update_profile(
        g.user.id,
        username=request.form.get("username"),
        email=request.form.get("email"),
        current_password=request.form.get("current_password"),
        new_password=new_password,
    )
    flash("Profile updated.", "success")
    return redirect(url_for("auth.profile_page"))


# --- API ---
@bp.post("/api/auth/register")
def api_register():
    payload = request.get_json(force=True, silent=True) or {}
    user = g.auth.register(payload.get("username"), payload.get("email"), payload.get("password"))
    _start_session(user)
    return jsonify({"ok": True, "user": user.to_dict(), "token": g.auth.issue_token(user)}), 201


@bp.post("/api/auth/login")
def api_login():
    payload = request.get_json(force=True, silent=True) or {}
    user = g.auth.login(payload.get("email"), payload.get("password"))
    _start_session(user)
    return jsonify({"ok": True, "user": user.to_dict(), "token": g.auth.issue_token(user)})


@bp.post("/api/auth/logout")
def api_logout():
    session.pop("user_id", None)
    g.sync_registry.discard(session.get("client_id", ""))
    if g.token_user:
        g.sync_registry.discard(f"user-{g.user.id}")
    return jsonify({"ok": True})


@bp.get("/api/auth/me")
def api_me():
    # anonymous is a valid answer here; the client decides what to show
    user = g.user
    return jsonify({
        "authenticated": user is not None,
        "is_admin": bool(user and user.is_admin),
        "user": user.to_dict() if user else None,
    })


@bp.patch("/api/auth/me")
@login_required
def api_update_me():
    payload = request.get_json(force=True, silent=True) or {}
    user = g.auth.update_profile(
        g.user.id,
        username=payload.get("username"),
        email=payload.get("email"),
        current_password=payload.get("current_password"),
        new_password=payload.get("new_password"),
    )
    return jsonify({"ok": True, "user": user.to_dict()})
