"""
S3 and Slack helpers for Campaign Desk.

Exports can be archived to an S3 bucket and significant adjustments are
announced on a Slack incoming webhook.  Both go through this module so tests
have one place to monkeypatch.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

import boto3
import requests
from botocore.client import BaseClient


def get_s3_client() -> BaseClient:
    """S3 client for the export bucket; credentials fall back to the IAM role."""
    return boto3.client(
        "s3",
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        region_name=os.getenv("AWS_DEFAULT_REGION", "us-east-1"),
    )


def upload_file_to_s3(
    content: bytes, bucket: str, key: str, *, content_type: str = "text/csv;charset=utf-8"
) -> None:
    """Store an exported file under ``key`` in ``bucket``.

    ``content`` is the encoded file body; exports are UTF-8 CSV unless
    ``content_type`` says otherwise.
    """
    get_s3_client().put_object(Bucket=bucket, Key=key, Body=content, ContentType=content_type)


def send_slack_message(webhook_url: str, text: str, attachments: Optional[list] = None) -> None:
    """Post ``text`` to a Slack incoming webhook, raising on a non-2xx reply."""
    payload: Dict[str, Any] = {"text": text}
    if attachments:
        payload["attachments"] = attachments
    response = requests.post(webhook_url, json=payload, timeout=10)
    response.raise_for_status()
