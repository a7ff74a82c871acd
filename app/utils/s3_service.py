import os
import io
import logging
import uuid
from datetime import datetime, timezone
from PIL import Image, UnidentifiedImageError
import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.services.errors import UploadError

logger = logging.getLogger(__name__)

BUCKET = os.getenv("R2_BUCKET")
PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "").rstrip("/")
URL = f"https://{os.getenv('CLOUDFLARE_ACCOUNT_ID')}.r2.cloudflarestorage.com"

MAX_UPLOAD_SIZE_MB = 5
MAX_UPLOAD_BYTES = MAX_UPLOAD_SIZE_MB * 1024 * 1024

s3 = boto3.client(
    service_name="s3",
    endpoint_url=URL,
    aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
    aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
    region_name="auto",
)


def compress_image(data: bytes, max_width=1400, quality=80):
    try:
        img = Image.open(io.BytesIO(data))
        img = img.convert("RGB")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError):
        raise UploadError("File is not a readable image")

    # Resize while keeping aspect ratio
    w, h = img.size
    if w > max_width:
        new_height = int(h * (max_width / w))
        img = img.resize((max_width, new_height), Image.LANCZOS)

    # Try WebP first
    buffer = io.BytesIO()

    try:
        img.save(buffer, format="WEBP", quality=quality, method=6)
        ext = "webp"
    except (OSError, KeyError) as e:
        logger.warning("WebP failed, falling back to JPEG: %s", e)

        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=80, optimize=True)
        ext = "jpg"

    buffer.seek(0)
    return buffer, ext, img.size


def public_url(key: str) -> str:
    return f"{PUBLIC_URL}/{key}"


def key_from_url(url: str) -> str:
    prefix = f"{PUBLIC_URL}/"
    return url[len(prefix):] if url.startswith(prefix) else url


def upload(key: str, data: bytes, content_type: str) -> str:
    """Store bytes under key and return the public URL."""
    try:
        s3.upload_fileobj(io.BytesIO(data), BUCKET, key, ExtraArgs={"ContentType": content_type})
    except (BotoCoreError, ClientError) as e:
        logger.error("Upload of %s failed: %s", key, e)
        raise UploadError("Photo upload failed")

    return public_url(key)


def upload_photo(raw_bytes: bytes, original_name: str, folder: str = "reports") -> dict:
    """
    Compress and upload an image.

    Returns {"url", "width", "height", "size"} so callers can keep the
    dimensions of what was actually stored.
    """
    if len(raw_bytes) > MAX_UPLOAD_BYTES:
        raise UploadError(f"Image exceeds {MAX_UPLOAD_SIZE_MB}MB limit")

    buffer, ext, (width, height) = compress_image(raw_bytes)
    data = buffer.getvalue()

    base = os.path.splitext(os.path.basename(original_name or "photo"))[0]
    ts = int(datetime.now(timezone.utc).timestamp())
    key = f"{folder}/{base}-{ts}-{uuid.uuid4().hex[:8]}.{ext}"

    url = upload(key, data, f"image/{'jpeg' if ext == 'jpg' else ext}")

    return {"url": url, "width": width, "height": height, "size": len(data)}


def delete_s3_object(url: str):
    key = key_from_url(url)
    try:
        s3.delete_object(Bucket=BUCKET, Key=key)
    except (BotoCoreError, ClientError) as e:
        logger.error("Error deleting S3 object %s: %s", key, e)
