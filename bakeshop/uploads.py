import os
import time

from flask import Blueprint, current_app, jsonify, request, send_from_directory
from werkzeug.utils import secure_filename

from .errors import ValidationError
from .guards import admin_or_owner_required

uploads_bp = Blueprint("uploads", __name__)

ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "image/gif"})
UPLOAD_URL_PREFIX = "/uploads"


def stream_size(file_storage) -> int:
    stream = file_storage.stream
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def save_image(image_file) -> str:
    if not image_file or not getattr(image_file, "filename", ""):
        raise ValidationError("Image file is required")

    if image_file.mimetype not in ALLOWED_IMAGE_TYPES:
        raise ValidationError("Only image files are allowed")

    max_bytes = current_app.config["MAX_UPLOAD_BYTES"]
    if stream_size(image_file) > max_bytes:
        raise ValidationError(
            f"Image must be smaller than {max_bytes // (1024 * 1024)}MB"
        )

    safe_name = secure_filename(image_file.filename) or "image"
    filename = f"{int(time.time() * 1000)}-{safe_name}"
    destination = os.path.join(current_app.config["UPLOAD_FOLDER"], filename)
    image_file.save(destination)
    return filename


@uploads_bp.route("/api/uploads/image", methods=["POST"])
@admin_or_owner_required
def upload_image():
    filename = save_image(request.files.get("image"))
    current_app.logger.info("Stored uploaded image %s", filename)
    return (
        jsonify({"message": "Image uploaded", "imageUrl": f"{UPLOAD_URL_PREFIX}/{filename}"}),
        201,
    )


@uploads_bp.route(f"{UPLOAD_URL_PREFIX}/<path:filename>")
def serve_uploaded_file(filename: str):
    return send_from_directory(current_app.config["UPLOAD_FOLDER"], filename)
