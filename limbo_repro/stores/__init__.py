"""
Object store backends

open_store() builds the backend named by HarnessConfig.backend. The SDK
for a remote backend is only imported when that backend is selected.
"""

from limbo_repro.config import HarnessConfig
from limbo_repro.stores.base import (
    DownloadStream,
    ObjectStore,
    StoreCapabilities,
    materialize,
)
from limbo_repro.stores.memory import InMemoryObjectStore

__all__ = [
    "DownloadStream",
    "InMemoryObjectStore",
    "ObjectStore",
    "StoreCapabilities",
    "materialize",
    "open_store",
]


def open_store(config: HarnessConfig) -> ObjectStore:
    if config.backend == "memory":
        return InMemoryObjectStore(upload_mode=config.memory_upload_mode)

    if config.backend == "azure":
        from limbo_repro.stores.azure_blob import AzureBlobObjectStore

        return AzureBlobObjectStore.from_connection_string(config.connection_string)

    from limbo_repro.stores.s3 import S3ObjectStore

    return S3ObjectStore.connect(
        endpoint_url=config.s3_endpoint,
        access_key=config.s3_access_key,
        secret_key=config.s3_secret_key,
        region=config.s3_region,
        verify_ssl=config.verify_ssl,
    )
