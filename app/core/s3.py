import io
from typing import List, Optional

import boto3
from app.core.config import settings

_s3_client = None


def get_s3_client():
    """Create the S3 client on first use.

    Local: uses access key from .env
    Production: falls back to the instance / task IAM role
    """
    global _s3_client
    if _s3_client is None:
        credentials = {}
        if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
            credentials = {
                "aws_access_key_id": settings.AWS_ACCESS_KEY_ID,
                "aws_secret_access_key": settings.AWS_SECRET_ACCESS_KEY,
            }
        _s3_client = boto3.client("s3", region_name=settings.AWS_REGION, **credentials)
    return _s3_client


def public_url(key: str, bucket: Optional[str] = None) -> str:
    bucket = bucket or settings.AWS_S3_BUCKET
    return f"https://{bucket}.s3.{settings.AWS_REGION}.amazonaws.com/{key}"


def upload_bytes_to_s3(data: bytes, key: str, content_type: str) -> str:
    """
    Uploads raw bytes to S3 and returns an HTTPS URL.
    """
    if not settings.AWS_S3_BUCKET:
        raise RuntimeError("AWS_S3_BUCKET is not configured")

    try:
        get_s3_client().upload_fileobj(
            Fileobj=io.BytesIO(data),
            Bucket=settings.AWS_S3_BUCKET,
            Key=key,
            ExtraArgs={
                "ContentType": content_type,
            },
        )

        # Standard S3 URL (works if object is public OR you serve via CloudFront)
        return public_url(key)
    except Exception as e:
        print(f"❌ S3 Upload Error: {str(e)}")
        raise


def delete_keys_from_s3(keys: List[str]) -> None:
    """Best-effort removal of objects uploaded by an abandoned batch."""
    if not keys or not settings.AWS_S3_BUCKET:
        return

    get_s3_client().delete_objects(
        Bucket=settings.AWS_S3_BUCKET,
        Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
    )
