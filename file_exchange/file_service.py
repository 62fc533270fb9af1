import signal
import sys

from flask import (
    Blueprint, Flask, Response, abort, current_app, jsonify, redirect,
    render_template_string, request, send_file, send_from_directory, url_for,
)
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from file_exchange import config
from file_exchange.auth import StaticKeyAuthenticator, admin_required, get_authenticator
from file_exchange.logging_config import logger, setup_logging
from file_exchange.storage import FileStorage, FileTooLargeError, InvalidFilenameError

bp = Blueprint("files", __name__)

ADMIN_PAGE = """<!doctype html>
<title>Uploaded files</title>
<h1>Uploaded files</h1>
<ul>
{% for f in files %}
  <li>{{ f.name }}
    <a href="{{ f.url }}">Download</a>
    <a href="{{ url_for('files.admin_delete', file=f.name, **credentials) }}">Delete</a>
  </li>
{% else %}
  <li>No files uploaded.</li>
{% endfor %}
</ul>
"""


def _storage() -> FileStorage:
    return current_app.extensions["file_exchange.storage"]


def _safe_path(filename: str):
    """Resolve a client-supplied name inside the storage root, or abort with 400/404."""
    try:
        return _storage().resolve_safe(filename)
    except InvalidFilenameError:
        logger.warning("Rejected filename %r", filename)
        abort(400, description="Invalid filename")
    except FileNotFoundError:
        abort(404, description="File not found")


def _delete(filename: str) -> None:
    try:
        _storage().delete(filename)
    except InvalidFilenameError:
        logger.warning("Rejected filename %r", filename)
        abort(400, description="Invalid filename")
    except FileNotFoundError:
        abort(404, description="File not found")
    except OSError:
        logger.exception("Failed to delete %s", filename)
        abort(500, description="Failed to delete file")
    logger.info("File deleted: %s", filename)


@bp.route("/api/upload", methods=["POST"])
def upload_file():
    uploads = request.files.getlist("file")
    if not uploads or not uploads[0].filename:
        abort(400, description="No file uploaded")
    if len(uploads) > 1:
        abort(400, description="Only one file may be uploaded per request")

    upload = uploads[0]
    try:
        stored = _storage().save(upload.stream, upload.filename)
    except FileTooLargeError:
        logger.warning("Rejected upload of %r: larger than %d bytes", upload.filename, _storage().max_size)
        abort(413, description="File too large")

    logger.info("File uploaded: %s (%d bytes) as %s", upload.filename, stored.size, stored.name)
    return jsonify({"message": "File uploaded successfully", "file": stored.upload_info()}), 200


@bp.route("/api/files", methods=["GET"])
def list_files():
    try:
        files = _storage().list_files()
    except OSError:
        logger.exception("Unable to read file list")
        abort(500, description="Unable to read file list")
    return jsonify([f.to_dict() for f in files]), 200


@bp.route("/api/files/<path:filename>", methods=["DELETE"])
def delete_file(filename):
    _delete(filename)
    return jsonify({"message": "File deleted successfully"}), 200


@bp.route("/api/download/<path:filename>", methods=["GET"])
def download_file(filename):
    path = _safe_path(filename)
    try:
        # once the body is streaming a read error can only cut the transfer short
        return send_file(path, as_attachment=True, download_name=path.name)
    except OSError:
        logger.exception("Failed to send %s", filename)
        abort(500, description="Failed to download file")


@bp.route("/uploads/<path:name>", methods=["GET"])
def serve_upload(name):
    # hidden entries are metadata and in-progress uploads
    if any(part.startswith(".") for part in name.split("/")):
        abort(404, description="File not found")
    return send_from_directory(_storage().root, name)


@bp.route("/", methods=["GET"])
def index():
    return send_from_directory(current_app.config["PUBLIC_DIR"], "index.html")


@bp.route("/<path:asset>", methods=["GET"])
def public_asset(asset):
    return send_from_directory(current_app.config["PUBLIC_DIR"], asset)


@bp.route("/admin", methods=["GET"])
@admin_required
def admin_page():
    try:
        files = _storage().list_files()
    except OSError:
        logger.exception("Unable to read file list")
        return Response("Unable to read file list", status=500, mimetype="text/plain")
    return render_template_string(ADMIN_PAGE, files=files, credentials=get_authenticator().credentials(request))


@bp.route("/admin/delete", methods=["GET"])
@admin_required
def admin_delete():
    _delete(request.args.get("file", ""))
    return redirect(url_for("files.admin_page", **get_authenticator().credentials(request)))


def handle_http_error(error: HTTPException):
    return jsonify({"error": error.description}), error.code


def handle_unmatched_method(error):
    # only the GET catch-all matched the path, so no route exists for it
    return jsonify({"error": "Not found"}), 404


def handle_too_large(error):
    return jsonify({"error": "File too large"}), 413


def handle_unexpected_error(error):
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"error": "Internal server error"}), 500


def create_app(test_config=None) -> Flask:
    """
    Build the application. ``test_config`` overrides FILES_DIR, PUBLIC_DIR,
    MAX_UPLOAD_SIZE, ADMIN_KEY or AUTHENTICATOR (an ``Authenticator``
    replacing the static admin key).
    """
    app = Flask(__name__, static_folder=None)
    app.config.from_mapping(
        FILES_DIR=config.FILES_DIR,
        PUBLIC_DIR=config.PUBLIC_DIR,
        MAX_UPLOAD_SIZE=config.MAX_UPLOAD_SIZE,
        ADMIN_KEY=config.ADMIN_KEY,
        AUTHENTICATOR=None,
    )
    if test_config is not None:
        app.config.update(test_config)
    app.config["MAX_CONTENT_LENGTH"] = app.config["MAX_UPLOAD_SIZE"] + config.MULTIPART_OVERHEAD

    storage = FileStorage(app.config["FILES_DIR"], max_size=app.config["MAX_UPLOAD_SIZE"])
    app.extensions["file_exchange.storage"] = storage
    app.extensions["file_exchange.authenticator"] = (
        app.config["AUTHENTICATOR"] or StaticKeyAuthenticator(app.config["ADMIN_KEY"])
    )

    CORS(app)
    app.register_blueprint(bp)
    app.register_error_handler(405, handle_unmatched_method)
    app.register_error_handler(413, handle_too_large)
    app.register_error_handler(HTTPException, handle_http_error)
    app.register_error_handler(Exception, handle_unexpected_error)

    logger.info("Uploaded files are stored in %s", storage.root)
    return app


def _shutdown(signum, frame):
    logger.info("Shutting down server...")
    sys.exit(0)


def main():
    setup_logging()
    app = create_app()
    signal.signal(signal.SIGINT, _shutdown)
    logger.info("File exchange server running on http://%s:%d (Ctrl+C to stop)", config.HOST, config.PORT)
    app.run(host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
