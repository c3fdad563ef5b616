import logging
from datetime import timedelta
from decimal import Decimal

from flask import Flask, g, jsonify, render_template, request, session
from dotenv import load_dotenv

from app.lodgeflow.config import load_config
from app.lodgeflow.db import init_db, teardown_db_session
from app.lodgeflow import models as _models  # noqa: F401  loads module tables before any blueprint
from app.lodgeflow.routes import bp as routes_bp
from app.lodgeflow.auth import bp as auth_bp, load_current_user
from app.lodgeflow.admin import bp as admin_bp
from app.lodgeflow.api import bp as api_bp
from app.lodgeflow.modules.catalog.admin import bp as catalog_bp
from app.lodgeflow.modules.locations.admin import bp as locations_bp
from app.lodgeflow.modules.resources.admin import bp as resources_bp
from app.lodgeflow.modules.listings.admin import bp as listings_bp
from app.lodgeflow.modules.users.admin import bp as users_bp
from app.lodgeflow.modules.bookings.views import bp as bookings_bp
from app.lodgeflow.modules.reports.views import bp as reports_bp


CSRF_EXEMPT_ENDPOINTS = frozenset({"auth.login_post"})


def _wants_json() -> bool:
    return request.path.startswith("/api/")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # CSRF protection (minimal)
    from app.lodgeflow.security import csrf_exempt_path, ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.lodgeflow.rbac import user_can

        def has_perm(key: str, owner_id: int | None = None) -> bool:
            return user_can(getattr(g, "current_user", None), key, owner_id=owner_id)

        return {"has_perm": has_perm, "current_user": getattr(g, "current_user", None)}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.template_filter("money")
    def _money_filter(value, symbol: str = "") -> str:
        if value is None:
            return "-"
        return f"{symbol}{Decimal(str(value)):,.2f}"

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")) or csrf_exempt_path(request.path):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Password login stays reachable when the session cookie has expired.
            if request.endpoint in CSRF_EXEMPT_ENDPOINTS:
                return None
            if not validate_csrf(request):
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            try:
                from app.lodgeflow.storage import S3Storage, storage_from_config

                storage = storage_from_config(app.config)
                if isinstance(storage, S3Storage):
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except Exception as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    if not app.config.get("SMTP_HOST") and not app.config.get("MAIL_SUPPRESS_SEND"):
        app.logger.warning("SMTP_HOST not set; outgoing email is disabled.")

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(catalog_bp, url_prefix="/admin")
    app.register_blueprint(locations_bp, url_prefix="/admin")
    app.register_blueprint(resources_bp)
    app.register_blueprint(listings_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(bookings_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(api_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        message = getattr(e, "description", None) or "Bad request."
        if _wants_json():
            return jsonify({"success": False, "message": message}), 400
        return render_template("errors/400.html", message=message), 400

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if _wants_json():
            return jsonify({"success": False, "message": "Not found."}), 404
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        if _wants_json():
            return jsonify({"success": False, "message": "Internal server error.", "request_id": rid}), 500
        return render_template("errors/500.html", request_id=rid), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if _wants_json():
            return jsonify({"success": False, "message": "You do not have permission to perform this action."}), 403
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        from flask import flash, redirect, url_for

        if _wants_json():
            return jsonify({"success": False, "message": "File too large. Maximum size is 10MB."}), 413
        flash("File too large. Maximum size is 10MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("public.index")), 302

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
