"""S3-compatible object store archive."""

import asyncio
from pathlib import Path
from typing import List, Optional

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from .._utils import logger
from ..config import RecoveryConfig
from ..exceptions import ConfigurationError, TransientIOError
from .base import BaseArchiveCopy, MANIFEST_FILE_NAME, CHUNK_SIZE, new_hasher

# Error codes that will not go away by retrying
_FATAL_LIST_CODES = {"NoSuchBucket", "AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"}


class S3ArchiveCopy(BaseArchiveCopy):
    """Archive stored in an S3 bucket.

    Archive paths are absolute (``/backups/store/rg1/rn1/...``); the object
    key is the path without its leading slash, under the optional prefix.
    """

    name = "s3"

    def __init__(self, config: RecoveryConfig):
        super().__init__(config)
        self.bucket = config.s3_bucket
        self.region = config.s3_region
        self.endpoint_url = config.s3_endpoint_url
        self.prefix = config.s3_prefix.strip("/")
        self.session = aioboto3.Session()

    def _client(self):
        return self.session.client(
            "s3",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
        )

    def _key(self, path: str) -> str:
        key = path.lstrip("/")
        return f"{self.prefix}/{key}" if self.prefix else key

    def _path(self, key: str) -> str:
        if self.prefix:
            key = key[len(self.prefix) + 1:]
        return "/" + key

    async def list_files(self, base_path: str, manifests_only: bool = False) -> List[str]:
        prefix = self._key(base_path).rstrip("/") + "/"
        paths = []
        try:
            async with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                    for obj in page.get("Contents", []):
                        key = obj["Key"]
                        if manifests_only and not key.endswith("/" + MANIFEST_FILE_NAME):
                            continue
                        paths.append(self._path(key))
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _FATAL_LIST_CODES:
                raise ConfigurationError(
                    f"Backup archive s3://{self.bucket}/{prefix} is not reachable: {code}"
                ) from e
            raise TransientIOError(f"Failed to list s3://{self.bucket}/{prefix}: {e}") from e
        except (BotoCoreError, asyncio.TimeoutError) as e:
            raise TransientIOError(f"Failed to list s3://{self.bucket}/{prefix}: {e}") from e

        if not paths:
            logger.warning(f"No objects found under s3://{self.bucket}/{prefix}")
        return sorted(paths)

    async def copy(
        self,
        source: str,
        destination: Path,
        checksum_alg: Optional[str] = None,
    ) -> Optional[str]:
        key = self._key(source)
        hasher = new_hasher(checksum_alg) if checksum_alg else None
        logger.debug(f"Downloading s3://{self.bucket}/{key} to {destination}")
        try:
            async with self._client() as s3:
                response = await s3.get_object(Bucket=self.bucket, Key=key)
                with open(destination, "wb") as dst:
                    async with response["Body"] as stream:
                        while True:
                            chunk = await stream.read(CHUNK_SIZE)
                            if not chunk:
                                break
                            if hasher is not None:
                                hasher.update(chunk)
                            dst.write(chunk)
        except (ClientError, BotoCoreError, OSError, asyncio.TimeoutError) as e:
            raise TransientIOError(f"Failed to copy s3://{self.bucket}/{key} to {destination}: {e}") from e
        return hasher.hexdigest() if hasher is not None else None
