import os
import uuid

import boto3
from botocore.exceptions import NoCredentialsError
from werkzeug.utils import secure_filename


def _client(region=None):
    return boto3.client(
        "s3",
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        region_name=region or os.getenv("AWS_REGION"),
    )


def reference_photo_key(original_name: str) -> str:
    name = secure_filename(original_name or "") or "photo"
    return f"reference-photos/{uuid.uuid4().hex}_{name}"


def upload_file_to_s3(file, filename, bucket_name, base_url=None, region=None):
    s3 = _client(region)
    extra = {"ACL": "public-read"}
    content_type = getattr(file, "mimetype", None)
    if content_type:
        extra["ContentType"] = content_type
    try:
        s3.upload_fileobj(file, bucket_name, filename, ExtraArgs=extra)
    except NoCredentialsError:
        raise RuntimeError("AWS credentials not found. Check environment variables.")

    base_url = (base_url or f"https://{bucket_name}.s3.amazonaws.com").rstrip("/")
    return f"{base_url}/{filename}"
