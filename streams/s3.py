"""
S3 / MinIO access for the s3 file backend.

Objects are written and removed server-side; the encoder only ever sees a
presigned GET URL, so ffmpeg needs no credentials.
"""
import boto3
from botocore.config import Config as BotoConfig
from django.conf import settings

_CLIENT_CONFIG = BotoConfig(
    s3={"addressing_style": "path"},   # MinIO has no virtual-host buckets
    signature_version="s3v4",
)


def get_s3_client():
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    return session.client("s3", endpoint_url=settings.S3_ENDPOINT_URL, config=_CLIENT_CONFIG)


def upload_fileobj(fileobj, key: str, content_type: str | None = None) -> None:
    extra = {"ContentType": content_type} if content_type else None
    get_s3_client().upload_fileobj(fileobj, settings.S3_BUCKET, key, ExtraArgs=extra)


def create_presigned_get(key: str, expires: int | None = None) -> str:
    """
    URL ffmpeg reads the source from. Looping inputs are re-opened from the
    start, so it must stay valid for the whole stream.
    """
    return get_s3_client().generate_presigned_url(
        ClientMethod="get_object",
        Params={"Bucket": settings.S3_BUCKET, "Key": key},
        ExpiresIn=expires or settings.S3_PRESIGN_EXPIRE_SECONDS,
    )


def delete_object(key: str) -> None:
    get_s3_client().delete_object(Bucket=settings.S3_BUCKET, Key=key)
