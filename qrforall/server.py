"""HTTP surface: JSON management API plus the public scan endpoint."""

from flask import Flask, Response, jsonify, redirect, render_template_string, request

from qrforall.config import Settings
from qrforall.errors import NotFoundError, QRForAllError, ValidationError
from qrforall.logging import audit, get_logger, trace
from qrforall.service import QRCodeService
from qrforall.store import QRMode

log = get_logger("server")

TOKEN_HEADER = "X-Edit-Token"
EXPORT_CACHE_CONTROL = "public, max-age=3600"

# Rendered with autoescaping, so record content is never interpreted as markup
PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <title>{{ title }}</title>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <style>
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
           text-align: center; margin: 0; padding: 20px; min-height: 100vh; color: white;
           background: linear-gradient(135deg, {{ colors[0] }} 0%, {{ colors[1] }} 100%); }
    .container { background: rgba(255, 255, 255, 0.1); border-radius: 20px; padding: 40px;
                 max-width: 600px; margin: 80px auto 0; }
    .content { background: rgba(0, 0, 0, 0.2); border-radius: 10px; padding: 20px;
               word-break: break-all; font-family: 'Courier New', monospace; text-align: left; }
  </style>
</head>
<body>
  <div class="container">
    <h1>{{ title }}</h1>
    {% for line in lines %}<p>{{ line }}</p>{% endfor %}
    {% if content is not none %}<div class="content" id="content">{{ content }}</div>{% endif %}
  </div>
</body>
</html>
"""

_NEUTRAL = ("#667eea", "#764ba2")
_WARNING = ("#ff6b6b", "#ee5a24")


def _page(title: str, lines: list[str], status: int = 200, content: str | None = None,
          colors: tuple[str, str] = _NEUTRAL) -> Response:
    html = render_template_string(PAGE_TEMPLATE, title=title, lines=lines, content=content, colors=colors)
    return Response(html, status=status, mimetype="text/html")


def _ok(data, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def _edit_token(allow_query: bool = False) -> str | None:
    token = request.headers.get(TOKEN_HEADER)
    if not token and allow_query:
        token = request.args.get("editToken")
    return token


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _export_size(raw: str | None) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"size must be an integer (got {raw!r})") from None


@trace
def create_app(service: QRCodeService, settings: Settings | None = None) -> Flask:
    """Create the Flask app serving the management API and ``/r/<slug>``."""
    settings = settings or service.settings
    app = Flask(__name__)
    app.config["QRFORALL_SETTINGS"] = settings

    # --- errors ---------------------------------------------------------

    @app.errorhandler(QRForAllError)
    def handle_domain_error(exc: QRForAllError):
        audit("http.error", logger=log, path=request.path, code=exc.code, status=exc.status)
        return jsonify(exc.to_dict()), exc.status

    @app.errorhandler(404)
    def handle_not_found(exc):
        return jsonify({"success": False, "error": "Not found", "code": "NOT_FOUND"}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(exc):
        return jsonify({"success": False, "error": "Method not allowed", "code": "METHOD_NOT_ALLOWED"}), 405

    @app.errorhandler(500)
    def handle_internal_error(exc):
        original = getattr(exc, "original_exception", None) or exc
        log.error("Unhandled error on %s %s", request.method, request.path,
                  exc_info=(type(original), original, original.__traceback__))
        return jsonify({"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"}), 500

    # --- management API -------------------------------------------------

    @app.route("/api/qrcodes", methods=["POST"])
    def create_qrcode():
        body = _json_body()
        created = service.create(
            mode=body.get("mode"),
            content=body.get("content"),
            options=body.get("options"),
            logo_url=body.get("logoUrl"),
        )
        return _ok(created.to_dict(), 201)

    @app.route("/api/qrcodes/<qr_id>", methods=["GET"])
    def get_qrcode(qr_id):
        record = service.get(qr_id, _edit_token(allow_query=True))
        return _ok(record.to_dict())

    @app.route("/api/qrcodes/<qr_id>", methods=["PATCH"])
    def update_qrcode(qr_id):
        token = _edit_token()
        record = service.update(qr_id, token, _json_body())
        return _ok(record.to_dict())

    @app.route("/api/qrcodes/<qr_id>/pause", methods=["POST"])
    def toggle_pause(qr_id):
        record = service.toggle_pause(qr_id, _edit_token())
        return _ok(record.to_dict())

    @app.route("/api/qrcodes/<qr_id>/rotate-token", methods=["POST"])
    def rotate_token(qr_id):
        new_token = service.rotate_token(qr_id, _edit_token())
        return _ok({"editToken": new_token})

    @app.route("/api/qrcodes/<qr_id>", methods=["DELETE"])
    def delete_qrcode(qr_id):
        service.delete(qr_id, _edit_token())
        return "", 204

    @app.route("/api/qrcodes/<qr_id>/export", methods=["GET"])
    def export_qrcode(qr_id):
        fmt = request.args.get("format")
        if not fmt:
            raise ValidationError("Invalid format. Use png, jpeg, or svg.")
        result = service.export(qr_id, fmt, size=_export_size(request.args.get("size")))
        response = Response(result.data, mimetype=result.content_type)
        response.headers["Cache-Control"] = EXPORT_CACHE_CONTROL
        return response

    # --- scan surface ---------------------------------------------------

    @app.route("/r/<slug>")
    def scan(slug):
        try:
            record = service.resolve(slug)
        except NotFoundError:
            return _page("QR Code Not Found", ["This QR code doesn't exist or has been deleted."], 404)

        if not record.active:
            audit("scan.paused", logger=log, slug=slug)
            return _page(
                "QR Code Paused",
                ["This QR code is currently paused by its owner.", "Scanning is temporarily disabled."],
                410,
                colors=_WARNING,
            )

        if record.mode is QRMode.REDIRECT:
            audit("scan.redirect", logger=log, slug=slug, destination=record.content[:80])
            return redirect(record.content, code=302)

        return _page("QR Code Content", ["This QR code contains the following information:"],
                     content=record.content)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "env": settings.app_env, **service.store.stats()})

    return app
