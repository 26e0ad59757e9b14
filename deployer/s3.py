"""Thin S3 helpers for staging environment artifacts."""

import logging
import re
from typing import IO, Tuple, Union
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_VIRTUAL_HOST = re.compile(r"^(?P<bucket>.+)\.s3(?:[.-][a-z0-9-]+)?\.amazonaws\.com(?:\.cn)?$")


def format_arn(partition: str, bucket: str) -> str:
    return f"arn:{partition}:s3:::{bucket}"


def parse_url(url: str) -> Tuple[str, str]:
    """Split a virtual-hosted S3 URL into (bucket, key).

    Accepts both ``https://bucket.s3.us-west-2.amazonaws.com/key`` and the older
    ``https://bucket.s3-us-west-2.amazonaws.com/key`` forms.
    """
    parsed = urlparse(url)
    match = _VIRTUAL_HOST.match(parsed.netloc)
    key = parsed.path.lstrip("/")
    if match is None or not key:
        raise ValueError(f"cannot parse S3 URL {url}")
    return match.group("bucket"), key


class S3Uploader:
    """Uploads objects to S3 and reports where they landed.

    Args:
        client: A boto3 S3 client in the environment's region.
    """

    def __init__(self, client) -> None:
        self._client = client

    def upload(self, bucket: str, key: str, body: Union[bytes, IO[bytes]]) -> str:
        self._client.put_object(Bucket=bucket, Key=key, Body=body)
        region = self._client.meta.region_name
        url = f"https://{bucket}.s3.{region}.amazonaws.com/{key}"
        logger.debug("Uploaded %s", url)
        return url
