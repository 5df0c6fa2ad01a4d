import os
import logging
import threading

from dotenv import load_dotenv
from flask import Flask, request, jsonify, render_template
from markupsafe import Markup, escape

from auditengine import AuditValidationError
from extractor import ExtractionError
from models import STATUS_LABELS, UploadedFile
from session import AuditSession, SessionBusyError, render_state

load_dotenv()

# =============================
# CONFIG
# =============================

MAX_MB = int(os.getenv("MAX_MB", "25"))
PORT = int(os.getenv("PORT", "8080"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

ACCEPTED_EXTENSIONS = ".txt,.pdf,.docx,.xlsx,.xls,.csv,.jpg,.jpeg,.png"

logging.basicConfig(
    level=LOG_LEVEL,
    format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
)

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = MAX_MB * 1024 * 1024

audit_session = AuditSession()

# =============================
# HELPERS
# =============================

@app.template_filter("narrative")
def narrative_html(text):
    """Escapes model output, then turns line breaks into <br/>."""
    return Markup("<br/>".join(escape(line) for line in (text or "").split("\n")))


def error_response(message, status):
    return jsonify({"error": message}), status


def json_field(name, default=None):
    payload = request.get_json(silent=True) or {}
    return payload.get(name, default)


# =============================
# ROUTES
# =============================

@app.route("/")
def index():
    state = audit_session.state
    return render_template(
        "index.html",
        state=state,
        view=render_state(state),
        labels=STATUS_LABELS,
        accept=ACCEPTED_EXTENSIONS,
    )


@app.route("/state")
def state():
    return jsonify(audit_session.snapshot())


@app.route("/regulation", methods=["POST"])
def regulation():
    audit_session.edit_regulation(json_field("text", "") or "")
    return jsonify(audit_session.snapshot())


@app.route("/scenario", methods=["POST"])
def scenario():
    audit_session.edit_scenario(json_field("text", "") or "")
    return jsonify(audit_session.snapshot())


@app.route("/search", methods=["POST"])
def search():
    audit_session.set_search(bool(json_field("enabled", False)))
    return jsonify(audit_session.snapshot())


@app.route("/upload", methods=["POST"])
async def upload():
    storages = request.files.getlist("files")
    if not storages:
        return error_response("No files uploaded", 400)

    files = [UploadedFile(filename=s.filename or "unnamed", data=s.read()) for s in storages]

    try:
        await audit_session.upload(files)
    except SessionBusyError as e:
        return error_response(str(e), 409)
    except ExtractionError:
        return error_response(audit_session.state.error, 400)

    return jsonify(audit_session.snapshot())


@app.route("/run-audit", methods=["POST"])
def run_audit():
    try:
        audit_request = audit_session.begin_audit()
    except AuditValidationError as e:
        return error_response(str(e), 400)
    except SessionBusyError as e:
        return error_response(str(e), 409)

    threading.Thread(target=audit_session.finish_audit, args=(audit_request,)).start()
    return jsonify({"status": "started"})


@app.route("/status")
def status():
    state = audit_session.state
    data = {"status": render_state(state)}
    if state.report is not None and data["status"] == "has-result":
        data["report"] = state.report.to_dict()
    if state.error:
        data["error"] = state.error
    return jsonify(data)


@app.route("/image/edit", methods=["POST"])
def edit_image():
    try:
        new_state = audit_session.edit_image(json_field("instruction", "") or "")
    except SessionBusyError as e:
        return error_response(str(e), 409)
    except ValueError as e:
        return error_response(str(e), 400)

    if new_state.image_error:
        return error_response(new_state.image_error, 502)
    return jsonify(audit_session.snapshot())


@app.route("/image", methods=["DELETE"])
def clear_image():
    audit_session.clear_image()
    return jsonify(audit_session.snapshot())


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=PORT)
