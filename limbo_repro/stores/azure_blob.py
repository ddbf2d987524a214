"""
Azure Blob Storage backend

Tag conditions are evaluated by the service (x-ms-if-tags), atomically
with the write. A rejected condition comes back as HTTP 412 with error
code ConditionNotMet.
"""

import logging

from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from azure.storage.blob import BlobServiceClient

from limbo_repro.errors import NotFoundError, StoreError
from limbo_repro.outcomes import ConditionNotMet, OtherError, Success
from limbo_repro.stores.base import ObjectStore, StoreCapabilities

logger = logging.getLogger(__name__)

CONDITION_NOT_MET = "ConditionNotMet"


def _is_condition_not_met(exc: HttpResponseError) -> bool:
    return getattr(exc, "error_code", None) == CONDITION_NOT_MET or (
        getattr(exc, "status_code", None) == 412
    )


class AzureBlobObjectStore(ObjectStore):
    """Blob service client wrapper; containers map to blob containers"""

    name = "azure"
    capabilities = StoreCapabilities(streams_uploads=True)

    def __init__(self, client: BlobServiceClient):
        super().__init__()
        self.client = client

    @classmethod
    def from_connection_string(cls, connection_string: str) -> "AzureBlobObjectStore":
        return cls(BlobServiceClient.from_connection_string(connection_string))

    # Containers

    def create_container_if_not_exists(self, container):
        try:
            self.client.get_container_client(container).create_container()
            logger.info(f"Created container {container}")
        except ResourceExistsError:
            pass
        except AzureError as e:
            raise StoreError(
                f"Failed to create container {container}: {e}",
                operation="create_container",
                container=container,
            ) from e

    def delete_container_if_exists(self, container):
        try:
            self.client.get_container_client(container).delete_container()
            logger.info(f"Deleted container {container}")
        except ResourceNotFoundError:
            pass
        except AzureError as e:
            raise StoreError(
                f"Failed to delete container {container}: {e}",
                operation="delete_container",
                container=container,
            ) from e

    def container_exists(self, container):
        try:
            return self.client.get_container_client(container).exists()
        except AzureError as e:
            raise StoreError(
                f"Failed to check container {container}: {e}",
                operation="container_exists",
                container=container,
            ) from e

    # Blobs

    def upload(self, container, key, data, tags=None, condition=None):
        blob_client = self.client.get_blob_client(container, key)
        kwargs = {"overwrite": True}
        if tags:
            kwargs["tags"] = dict(tags)
        if condition is not None:
            kwargs["if_tags_match_condition"] = str(condition)

        try:
            properties = blob_client.upload_blob(data, **kwargs)
        except HttpResponseError as e:
            if _is_condition_not_met(e):
                logger.debug(f"Condition {condition} not met for {container}/{key}")
                return ConditionNotMet(f"{container}/{key}: {e.message}")
            logger.error(f"Failed to upload {container}/{key}: {e}")
            return OtherError(f"{container}/{key}: {e}", e)
        except AzureError as e:
            # No response from the service at all
            logger.error(f"Failed to upload {container}/{key}: {e}")
            return OtherError(f"{container}/{key}: {e}", e)

        return Success((properties or {}).get("etag"))

    def download(self, container, key):
        blob_client = self.client.get_blob_client(container, key)
        try:
            downloader = blob_client.download_blob()
        except ResourceNotFoundError as e:
            raise NotFoundError(
                f"Blob {container}/{key} does not exist",
                operation="download",
                container=container,
                key=key,
            ) from e
        except AzureError as e:
            raise StoreError(
                f"Failed to download {container}/{key}: {e}",
                operation="download",
                container=container,
                key=key,
            ) from e
        return self._track_stream(downloader.chunks())

    def get_tags(self, container, key):
        blob_client = self.client.get_blob_client(container, key)
        try:
            return dict(blob_client.get_blob_tags())
        except ResourceNotFoundError as e:
            raise NotFoundError(
                f"Blob {container}/{key} does not exist",
                operation="get_tags",
                container=container,
                key=key,
            ) from e
        except AzureError as e:
            raise StoreError(
                f"Failed to read tags of {container}/{key}: {e}",
                operation="get_tags",
                container=container,
                key=key,
            ) from e

    def exists(self, container, key):
        try:
            return self.client.get_blob_client(container, key).exists()
        except AzureError as e:
            raise StoreError(
                f"Failed to check {container}/{key}: {e}",
                operation="exists",
                container=container,
                key=key,
            ) from e

    def close(self):
        super().close()
        self.client.close()
