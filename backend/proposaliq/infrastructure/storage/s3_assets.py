from __future__ import annotations

from functools import lru_cache
from typing import Any

import boto3

from ...settings import settings


class AssetTooLarge(RuntimeError):
    pass


@lru_cache(maxsize=1)
def _s3():
    return boto3.client("s3", region_name=settings.aws_region)


def assets_bucket() -> str:
    name = (settings.assets_bucket_name or "").strip()
    if not name:
        raise RuntimeError("ASSETS_BUCKET_NAME is not set")
    return name


def get_object(*, key: str, max_bytes: int) -> tuple[bytes, str | None]:
    """Read an uploaded solicitation file. Returns (data, content_type)."""
    resp = _s3().get_object(Bucket=assets_bucket(), Key=str(key).lstrip("/"))
    declared = int(resp.get("ContentLength") or 0)
    if declared > max_bytes:
        resp["Body"].close()
        raise AssetTooLarge(f"{key} is {declared} bytes; limit is {max_bytes}")

    # Read one byte past the limit so a missing ContentLength cannot bypass it.
    data = resp["Body"].read(max_bytes + 1)
    if len(data) > max_bytes:
        raise AssetTooLarge(f"{key} exceeds {max_bytes} bytes")
    return data, resp.get("ContentType")


def put_object(*, key: str, data: bytes, content_type: str | None) -> dict[str, Any]:
    bucket = assets_bucket()
    params: dict[str, Any] = {"Bucket": bucket, "Key": str(key).lstrip("/"), "Body": data}
    if content_type:
        params["ContentType"] = str(content_type)
    _s3().put_object(**params)
    return {"bucket": bucket, "key": params["Key"], "uri": f"s3://{bucket}/{params['Key']}"}


def presign_get_object(*, key: str, expires_in: int = 3600) -> dict[str, Any]:
    bucket = assets_bucket()
    # SigV4 presigned URLs are valid for at most seven days.
    url = _s3().generate_presigned_url(
        ClientMethod="get_object",
        Params={"Bucket": bucket, "Key": str(key).lstrip("/")},
        ExpiresIn=max(60, min(7 * 24 * 3600, int(expires_in or 3600))),
    )
    return {"bucket": bucket, "key": key, "url": url}
