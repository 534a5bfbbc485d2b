# web_app/app.py
import logging
from typing import Optional

from flask import Flask, Response, g, jsonify, request
from werkzeug.exceptions import HTTPException

from pocketpilot.errors import FunctionError, ValidationError
from pocketpilot.settings import Settings, configure_logging, load_settings
from pocketpilot.store import Store
from web_app.services import EXTENSION_KEY, build_services

log = logging.getLogger(__name__)

# --- Auth exemptions (checked by auth_gate) ---
EXEMPT_PATHS = {
    "/healthz",
    "/auth/token",
}

CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"
CORS_ALLOW_METHODS = "GET, POST, PATCH, DELETE, OPTIONS"


def create_app(settings: Optional[Settings] = None, store: Optional[Store] = None, **services) -> Flask:
    settings = settings or load_settings()
    configure_logging("pocketpilot", settings)

    app = Flask(__name__)
    app.secret_key = settings.secret_key
    svc = build_services(settings, store=store, **services)
    app.extensions[EXTENSION_KEY] = svc

    # ------------------ MIDDLEWARE ------------------
    @app.before_request
    def auth_gate():
        if request.method == "OPTIONS":
            return Response("ok", 200)
        if request.path in EXEMPT_PATHS:
            return None
        g.user = svc.auth.user_from_header(request.headers.get("Authorization"))
        return None

    @app.after_request
    def add_cors_and_cache_headers(resp):
        resp.headers["Access-Control-Allow-Origin"] = settings.cors_origin
        resp.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
        resp.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
        if "X-Cache" not in resp.headers:
            resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
            resp.headers["Pragma"] = "no-cache"
            resp.headers["Expires"] = "0"
        return resp

    # ------------------ ERRORS ------------------
    @app.errorhandler(FunctionError)
    def handle_function_error(e: FunctionError):
        if e.status >= 500:
            log.error("[%s] %s", request.path, e.message)
        else:
            log.info("[%s] %s (%s)", request.path, e.message, e.status)
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        log.exception("[%s] unhandled error", request.path)
        return jsonify({"error": str(e) or "Unknown error"}), 500

    # ------------------ BLUEPRINTS ------------------
    from web_app.data_api import bp as data_bp
    from web_app.functions_api import bp as functions_bp
    app.register_blueprint(data_bp)
    app.register_blueprint(functions_bp)

    @app.get("/healthz")
    def healthz():
        return jsonify({"ok": True})

    @app.post("/auth/token")
    def auth_token():
        data = request.get_json(silent=True) or {}
        user_id = str(data.get("user_id") or "").strip()
        if not user_id:
            raise ValidationError("user_id is required")
        token = svc.auth.issue_token(user_id, data.get("email"))
        return jsonify({"access_token": token, "token_type": "bearer", "expires_in": settings.token_max_age}), 201

    app.logger.info("[Config] Using DATA_DIR=%s", settings.data_dir)
    return app


if __name__ == "__main__":
    create_app().run(debug=False)
