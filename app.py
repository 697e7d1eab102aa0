import logging
from typing import Dict, List, Optional

from flask import Blueprint, Flask, current_app, jsonify, request, send_file
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from config import MathifyConfig, load_config
from pdf_utils import (
    ImageProcessingError,
    PdfAssemblyError,
    PdfLoadError,
    build_homework_pdf,
    convert_images_to_pdf,
    count_pages,
)
from storage import StorageError, SubmissionStore

log = logging.getLogger(__name__)

UPLOAD_MODES = ("pdf", "images")
IMAGES_ONLY_FILE_NAME = "images_submission.pdf"

bp = Blueprint("mathify", __name__)


def _config() -> MathifyConfig:
    return current_app.config["MATHIFY"]


def _store() -> SubmissionStore:
    return current_app.config["MATHIFY_STORE"]


def _error(message: str, status: int):
    return jsonify({"message": message}), status


@bp.route("/health")
def health():
    return jsonify({"status": "ok"})


# --------------------------- Materials ---------------------------

@bp.route("/materials/<subchapter_id>", methods=["GET"])
def list_materials(subchapter_id: str):
    store = _store()
    try:
        materials = store.list_materials(subchapter_id)
        homework = store.find_homework_template(subchapter_id, _config().homework_keyword)
    except StorageError as e:
        return _error(str(e), 400)
    return jsonify({"materials": materials, "homework": homework})


@bp.route("/materials/<subchapter_id>", methods=["POST"])
def upload_materials(subchapter_id: str):
    store = _store()

    payload = request.get_json(silent=True)
    if payload is not None:
        title = (payload.get("title") or "").strip()
        url = (payload.get("url") or "").strip()
        if not title or not url:
            return _error("title and url are required.", 400)
        try:
            stored = [store.save_material_link(subchapter_id, title, url)]
        except StorageError as e:
            return _error(str(e), 400)
        return jsonify({"message": "Material saved.", "files": stored})

    files = request.files.getlist("files")
    if not files:
        return _error("No files uploaded.", 400)

    stored = []
    for file_storage in files:
        filename = secure_filename(file_storage.filename or "")
        if not filename.lower().endswith(".pdf"):
            continue
        data = file_storage.read()
        try:
            count_pages(data)
        except PdfLoadError:
            log.warning("Skipping unreadable material %s", filename)
            continue
        try:
            stored.append(store.save_material(subchapter_id, filename, data))
        except StorageError as e:
            return _error(str(e), 400)

    if not stored:
        return _error("No valid PDF files uploaded.", 400)

    return jsonify({"message": "Files uploaded successfully.", "files": stored})


@bp.route("/materials/<subchapter_id>/<name>", methods=["DELETE"])
def delete_material(subchapter_id: str, name: str):
    try:
        deleted = _store().delete_material(subchapter_id, name)
    except StorageError as e:
        return _error(str(e), 400)
    if not deleted:
        return _error("Material not found.", 404)
    return jsonify({"message": "Deleted."})


# --------------------------- Submissions ---------------------------

def _load_homework_template(subchapter_id: str) -> Optional[bytes]:
    """Return the subchapter's homework template, or None if it has none or it cannot be fetched."""
    store = _store()
    name = store.find_homework_template(subchapter_id, _config().homework_keyword)
    if name is None:
        log.info("No homework template for subchapter %s", subchapter_id)
        return None
    try:
        return store.read_material(subchapter_id, name)
    except StorageError as e:
        log.warning("Could not read homework template %s: %s", name, e)
        return None


def _build_from_images(subchapter_id: str, images: List[FileStorage]):
    photos = [image.read() for image in images]
    template = _load_homework_template(subchapter_id)
    if template is None:
        return convert_images_to_pdf(photos), IMAGES_ONLY_FILE_NAME

    build = build_homework_pdf(template, photos)
    stem = _config().homework_file_name
    return build.pdf, f"{stem}_with_images.pdf"


@bp.route("/submissions", methods=["POST"])
def create_submission():
    upload_mode = request.form.get("uploadMode", "")
    subchapter_id = (request.form.get("subchapterId") or "").strip()
    student_id = (request.form.get("studentId") or "").strip()

    if not subchapter_id or not student_id:
        return _error("Missing required fields", 400)

    try:
        if upload_mode == "pdf":
            file = request.files.get("file")
            if file is None:
                return _error("No file provided", 400)
            final_pdf = file.read()
            count_pages(final_pdf)
            file_name = file.filename or "homework.pdf"
        elif upload_mode == "images":
            images = request.files.getlist("images")
            if not images:
                return _error("No images provided", 400)
            max_images = _config().max_images
            if len(images) > max_images:
                return _error(f"Maximum {max_images} images allowed", 400)
            final_pdf, file_name = _build_from_images(subchapter_id, images)
        else:
            return _error("Invalid upload mode", 400)
    except ImageProcessingError as e:
        log.warning("Rejected photo submission for %s: %s", subchapter_id, e)
        return _error(e.user_message, 422)
    except PdfLoadError as e:
        log.warning("Rejected PDF for %s: %s", subchapter_id, e)
        if upload_mode == "pdf":
            return _error("The uploaded file is not a valid PDF.", 422)
        return _error(e.user_message, 422)
    except PdfAssemblyError as e:
        log.error("Failed to build submission for %s: %s", subchapter_id, e)
        return _error(e.user_message, 422)

    try:
        record = _store().save_submission(subchapter_id, student_id, file_name, final_pdf)
    except StorageError as e:
        return _error(str(e), 400)

    return (
        jsonify({"message": "Submission uploaded successfully", "submission": record.to_json()}),
        201,
    )


@bp.route("/submissions/<subchapter_id>", methods=["GET"])
def list_submissions(subchapter_id: str):
    student_id = request.args.get("studentId")
    try:
        records = _store().list_submissions(subchapter_id, student=student_id)
    except StorageError as e:
        return _error(str(e), 400)

    stats: Dict[str, int] = {
        "totalSubmissions": len(records),
        "totalBytes": sum(r.file_size for r in records),
    }
    return jsonify({"submissions": [r.to_json() for r in records], "stats": stats})


@bp.route("/submissions/<subchapter_id>/<stored_as>", methods=["GET"])
def download_submission(subchapter_id: str, stored_as: str):
    try:
        path = _store().submission_path(subchapter_id, stored_as)
    except StorageError as e:
        return _error(str(e), 400)
    if path.suffix.lower() != ".pdf" or not path.is_file():
        return _error("Submission not found.", 404)
    return send_file(path, mimetype="application/pdf", download_name=path.name)


def create_app(config: Optional[MathifyConfig] = None) -> Flask:
    if config is None:
        config = load_config()
    config.appdata_dir.mkdir(parents=True, exist_ok=True)

    app = Flask(__name__)
    app.config["MATHIFY"] = config
    app.config["MATHIFY_STORE"] = SubmissionStore(config.appdata_dir, fetch_timeout=config.fetch_timeout)
    app.register_blueprint(bp)
    return app


if __name__ == "__main__":
    cfg = load_config()
    logging.basicConfig(level=cfg.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    create_app(cfg).run(debug=True)
