"""Cloudflare R2 object storage for generated card images (S3 API via boto3)."""

from __future__ import annotations

import time

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

from shared.exceptions import StorageError

__all__ = ["get_r2_client", "upload_image", "delete_image", "public_url", "image_file_name"]

_REQUIRED_SETTINGS = ("R2_ACCOUNT_ID", "R2_ACCESS_KEY_ID", "R2_SECRET_ACCESS_KEY", "R2_BUCKET_NAME")


def get_r2_client():
    cfg = current_app.config
    missing = [name for name in _REQUIRED_SETTINGS if not cfg.get(name)]
    if missing:
        raise StorageError(f"Missing R2 settings: {', '.join(missing)}")
    return boto3.client(
        "s3",
        endpoint_url=f"https://{cfg['R2_ACCOUNT_ID']}.r2.cloudflarestorage.com",
        aws_access_key_id=cfg["R2_ACCESS_KEY_ID"],
        aws_secret_access_key=cfg["R2_SECRET_ACCESS_KEY"],
        region_name="auto",
    )


def image_file_name(card_id: str, extension: str) -> str:
    return f"{card_id}-{int(time.time() * 1000)}.{extension.lstrip('.')}"


def upload_image(data: bytes, file_name: str, content_type: str) -> str:
    """Store ``data`` under ``<prefix>/cards/<file_name>`` and return the key."""
    prefix = current_app.config.get("R2_PATH_PREFIX") or "dev"
    key = f"{prefix}/cards/{file_name}"
    client = get_r2_client()
    try:
        client.put_object(
            Bucket=current_app.config["R2_BUCKET_NAME"],
            Key=key,
            Body=data,
            ContentType=content_type,
        )
    except (BotoCoreError, ClientError) as exc:
        current_app.logger.exception("R2 upload failed for key=%s", key)
        raise StorageError("Failed to upload image to R2") from exc
    return key


def delete_image(key: str) -> None:
    client = get_r2_client()
    try:
        client.delete_object(Bucket=current_app.config["R2_BUCKET_NAME"], Key=key)
    except (BotoCoreError, ClientError) as exc:
        current_app.logger.exception("R2 delete failed for key=%s", key)
        raise StorageError("Failed to delete image from R2") from exc


def public_url(key: str) -> str:
    base = (current_app.config.get("R2_PUBLIC_URL") or "").rstrip("/")
    return f"{base}/{key}" if base else key
