"""
S3-compatible backend (AWS S3, MinIO, ...)

S3 has no tag-conditioned writes. The condition is evaluated against the
tags of the object as it is now, and the write is pinned to that object
with an ETag precondition:

- object absent: PutObject with If-None-Match: *
- object present and condition true: PutObject with If-Match: <etag>
- object present and condition false: ConditionNotMet, nothing written

A concurrent writer between the read and the write turns into a 412,
which is reported as ConditionNotMet as well. Tag-only changes do not
move the ETag, so two writers storing identical content are not told
apart; the harness never does that.

Streams are buffered before sending (StoreCapabilities.streams_uploads is
False): the naive streaming race cannot be reproduced on this backend.
"""

import logging
from typing import Dict, Optional, Tuple
from urllib.parse import urlencode

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from limbo_repro.conditions import coerce
from limbo_repro.errors import NotFoundError, StoreError
from limbo_repro.outcomes import ConditionNotMet, OtherError, Success
from limbo_repro.stores.base import ObjectStore, StoreCapabilities, materialize

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")
NO_BUCKET_CODES = ("404", "NoSuchBucket", "NotFound")
PRECONDITION_CODES = ("412", "PreconditionFailed", "ConditionalRequestConflict")


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


class S3ObjectStore(ObjectStore):
    """Containers map to buckets"""

    name = "s3"
    capabilities = StoreCapabilities(streams_uploads=False)

    def __init__(self, client, region: str = "us-east-1"):
        super().__init__()
        self.client = client
        self.region = region

    @classmethod
    def connect(
        cls,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: str = "us-east-1",
        verify_ssl: bool = True,
    ) -> "S3ObjectStore":
        client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            use_ssl=endpoint_url.startswith("https") if endpoint_url else True,
            verify=verify_ssl,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
        return cls(client, region=region)

    # Containers

    def create_container_if_not_exists(self, container):
        kwargs = {"Bucket": container}
        if self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self.client.create_bucket(**kwargs)
            logger.info(f"Created bucket {container}")
        except ClientError as e:
            if _error_code(e) in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                return
            raise StoreError(
                f"Failed to create bucket {container}: {e}",
                operation="create_container",
                container=container,
            ) from e
        except BotoCoreError as e:
            raise StoreError(
                f"Failed to create bucket {container}: {e}",
                operation="create_container",
                container=container,
            ) from e

    def delete_container_if_exists(self, container):
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=container):
                objects = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
                if objects:
                    self.client.delete_objects(
                        Bucket=container, Delete={"Objects": objects, "Quiet": True}
                    )
            self.client.delete_bucket(Bucket=container)
            logger.info(f"Deleted bucket {container}")
        except ClientError as e:
            if _error_code(e) in NO_BUCKET_CODES:
                return
            raise StoreError(
                f"Failed to delete bucket {container}: {e}",
                operation="delete_container",
                container=container,
            ) from e
        except BotoCoreError as e:
            raise StoreError(
                f"Failed to delete bucket {container}: {e}",
                operation="delete_container",
                container=container,
            ) from e

    def container_exists(self, container):
        try:
            self.client.head_bucket(Bucket=container)
            return True
        except ClientError as e:
            if _error_code(e) in NO_BUCKET_CODES:
                return False
            raise StoreError(
                f"Failed to check bucket {container}: {e}",
                operation="head_bucket",
                container=container,
            ) from e
        except BotoCoreError as e:
            raise StoreError(
                f"Failed to check bucket {container}: {e}",
                operation="head_bucket",
                container=container,
            ) from e

    # Blobs

    def _current(self, container, key) -> Optional[Tuple[str, Dict[str, str]]]:
        """ETag and tags of the object, or None if it does not exist"""
        try:
            head = self.client.head_object(Bucket=container, Key=key)
            tagging = self.client.get_object_tagging(Bucket=container, Key=key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return None
            raise
        tags = {tag["Key"]: tag["Value"] for tag in tagging.get("TagSet", [])}
        return head["ETag"], tags

    def upload(self, container, key, data, tags=None, condition=None):
        condition = coerce(condition)
        body = bytes(data) if isinstance(data, (bytes, bytearray, memoryview)) else materialize(data)
        kwargs = {"Bucket": container, "Key": key, "Body": body}
        if tags:
            kwargs["Tagging"] = urlencode(tags)

        try:
            if condition is not None:
                current = self._current(container, key)
                if current is None:
                    kwargs["IfNoneMatch"] = "*"
                else:
                    etag, current_tags = current
                    if not condition.evaluate(current_tags):
                        return ConditionNotMet(
                            f"{container}/{key}: condition {condition} not met "
                            f"by tags {current_tags}"
                        )
                    kwargs["IfMatch"] = etag
            response = self.client.put_object(**kwargs)
        except ClientError as e:
            if _error_code(e) in PRECONDITION_CODES:
                return ConditionNotMet(f"{container}/{key}: {_error_code(e)}")
            logger.error(f"Failed to upload {container}/{key}: {e}")
            return OtherError(f"{container}/{key}: {e}", e)
        except BotoCoreError as e:
            logger.error(f"Failed to upload {container}/{key}: {e}")
            return OtherError(f"{container}/{key}: {e}", e)

        return Success(response.get("ETag"))

    def download(self, container, key):
        try:
            response = self.client.get_object(Bucket=container, Key=key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES + NO_BUCKET_CODES:
                raise NotFoundError(
                    f"Object {container}/{key} does not exist",
                    operation="download",
                    container=container,
                    key=key,
                ) from e
            raise StoreError(
                f"Failed to download {container}/{key}: {e}",
                operation="download",
                container=container,
                key=key,
            ) from e
        except BotoCoreError as e:
            raise StoreError(
                f"Failed to download {container}/{key}: {e}",
                operation="download",
                container=container,
                key=key,
            ) from e
        body = response["Body"]
        return self._track_stream(body.iter_chunks(), release=body.close)

    def get_tags(self, container, key):
        try:
            response = self.client.get_object_tagging(Bucket=container, Key=key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES + NO_BUCKET_CODES:
                raise NotFoundError(
                    f"Object {container}/{key} does not exist",
                    operation="get_tags",
                    container=container,
                    key=key,
                ) from e
            raise StoreError(
                f"Failed to read tags of {container}/{key}: {e}",
                operation="get_tags",
                container=container,
                key=key,
            ) from e
        except BotoCoreError as e:
            raise StoreError(
                f"Failed to read tags of {container}/{key}: {e}",
                operation="get_tags",
                container=container,
                key=key,
            ) from e
        return {tag["Key"]: tag["Value"] for tag in response.get("TagSet", [])}

    def exists(self, container, key):
        try:
            self.client.head_object(Bucket=container, Key=key)
            return True
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES + NO_BUCKET_CODES:
                return False
            raise StoreError(
                f"Failed to check {container}/{key}: {e}",
                operation="head_object",
                container=container,
                key=key,
            ) from e
        except BotoCoreError as e:
            raise StoreError(
                f"Failed to check {container}/{key}: {e}",
                operation="head_object",
                container=container,
                key=key,
            ) from e
