from flask import Blueprint, current_app, jsonify, request

from nailsalon.utils.s3_utils import reference_photo_key, upload_file_to_s3

uploads_bp = Blueprint("uploads", __name__, url_prefix="/api/uploads")

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "heic"}


def _allowed(filename):
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


@uploads_bp.route("/reference-photo", methods=["POST"])
def upload_reference_photo():
    """
    Upload a nail design reference photo
    ---
    tags:
      - Uploads
    consumes:
      - multipart/form-data
    parameters:
      - in: formData
        name: image_file
        type: file
        required: true
    responses:
      201:
        description: Photo stored, returns its public URL
      400:
        description: Missing or unsupported file
      500:
        description: Storage not configured or upload failed
    """
    image = request.files.get("image_file")
    if image is None or not image.filename:
        return jsonify({"error": "image_file is required"}), 400
    if not _allowed(image.filename):
        return jsonify({"error": "Unsupported image type"}), 400

    bucket = current_app.config.get("S3_BUCKET_NAME")
    if not bucket:
        current_app.logger.error("Reference photo upload attempted without S3_BUCKET_NAME")
        return jsonify({"error": "File storage is not configured"}), 500

    key = reference_photo_key(image.filename)
    try:
        url = upload_file_to_s3(
            image,
            key,
            bucket,
            base_url=current_app.config.get("S3_BASE_URL"),
            region=current_app.config.get("S3_REGION"),
        )
    except Exception as e:
        current_app.logger.error("S3 upload failed for %s: %s", key, e)
        return jsonify({"error": "Upload failed", "details": str(e)}), 500

    current_app.logger.info("Stored reference photo %s", key)
    return jsonify({"url": url, "key": key}), 201
