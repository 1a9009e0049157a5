from __future__ import annotations

from functools import lru_cache

import boto3
from botocore.config import Config

from ...settings import settings

# SDK-level retries stay low; ddb_call owns the retry budget and backoff.
_BOTO_CONFIG = Config(
    retries={"max_attempts": 2, "mode": "standard"},
    connect_timeout=2,
    read_timeout=10,
    max_pool_connections=32,
)


@lru_cache(maxsize=4)
def _resource(region: str, endpoint_url: str | None):
    return boto3.resource("dynamodb", region_name=region, endpoint_url=endpoint_url, config=_BOTO_CONFIG)


def table_resource(table_name: str):
    """boto3 Table for `table_name`; DDB_ENDPOINT_URL points at DynamoDB Local in development."""
    endpoint = (settings.ddb_endpoint_url or "").strip() or None
    return _resource(settings.aws_region, endpoint).Table(table_name)
