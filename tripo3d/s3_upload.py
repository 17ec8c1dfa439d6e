"""
Direct upload of an image into the provider's S3 bucket.

upload/sts/token hands out short-lived credentials scoped to one object
key; the file is then PUT with boto3 and referenced in a task as
{"type": ..., "object": {"bucket": ..., "key": ...}}.

The multipart upload in TripoClient.upload_file is the usual route; this one
skips the API server for the file bytes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from tripo3d.errors import HttpError, NetworkFailure
from tripo3d.schema import StsToken


logger = logging.getLogger(__name__)


def s3_client_for(token: StsToken, endpoint_url: Optional[str] = None) -> Any:
    """
    Build an S3 client from the temporary credentials.

    With endpoint_url (an S3-compatible test server, for example) the client
    uses path-style addressing in us-east-1.
    """
    kwargs = {
        "aws_access_key_id": token.access_key,
        "aws_secret_access_key": token.secret_key,
        "aws_session_token": token.session_token,
    }
    if endpoint_url:
        kwargs.update(
            endpoint_url=endpoint_url,
            region_name="us-east-1",
            config=Config(s3={"addressing_style": "path"}),
        )
    return boto3.client("s3", **kwargs)


def put_file(s3_client: Any, token: StsToken, path: Path) -> None:
    """Blocking PUT of one local file to the object the token is scoped to."""
    try:
        with open(path, "rb") as f:
            s3_client.put_object(Bucket=token.bucket, Key=token.key, Body=f)
    except ClientError as exc:
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
        message = exc.response.get("Error", {}).get("Message") or str(exc)
        raise HttpError(status, f"S3 upload failed: {message}") from exc
    except BotoCoreError as exc:
        raise NetworkFailure(f"S3 upload failed: {exc}") from exc
    logger.info("Uploaded %s to s3://%s/%s", path.name, token.bucket, token.key)
