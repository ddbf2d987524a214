"""
Azure Blob Object Store Tests

Tests the Azure backend against a mocked BlobServiceClient:
- Tag conditions passed through as if_tags_match_condition
- ConditionNotMet (412) returned as an outcome, not raised
- Other HTTP errors and connection failures returned as OtherError
- Connection failures on reads and containers raised as StoreError
- Container create/delete idempotence
- Download streams and NotFound mapping
"""

from unittest import mock

import pytest
from azure.core.exceptions import (
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)

from limbo_repro.conditions import tag_less_than
from limbo_repro.errors import NotFoundError, StoreError
from limbo_repro.outcomes import ConditionNotMet, OtherError, Success
from limbo_repro.stores.azure_blob import AzureBlobObjectStore

CONTAINER = "repro"
KEY = "aa/aabbccdd-1122-3344-5566-778899aabbcc.txt"


def http_error(message, error_code, status_code):
    error = HttpResponseError(message=message)
    error.error_code = error_code
    error.status_code = status_code
    return error


@pytest.fixture
def service():
    return mock.MagicMock()


@pytest.fixture
def store(service):
    return AzureBlobObjectStore(service)


def test_conditioned_upload_passes_tags_and_condition(store, service):
    blob_client = service.get_blob_client.return_value
    blob_client.upload_blob.return_value = {"etag": '"0x1"'}

    outcome = store.upload(
        CONTAINER, KEY, b"Original content", tags={"LocalId": "123"},
        condition=tag_less_than("LocalId", "123"),
    )

    assert outcome == Success('"0x1"')
    service.get_blob_client.assert_called_with(CONTAINER, KEY)
    blob_client.upload_blob.assert_called_once_with(
        b"Original content",
        overwrite=True,
        tags={"LocalId": "123"},
        if_tags_match_condition="\"LocalId\" < '123'",
    )


def test_unconditioned_upload_sends_no_tags(store, service):
    blob_client = service.get_blob_client.return_value
    blob_client.upload_blob.return_value = {"etag": '"0x2"'}

    store.upload(CONTAINER, KEY, b"data")

    blob_client.upload_blob.assert_called_once_with(b"data", overwrite=True)


def test_condition_not_met_is_an_outcome(store, service):
    service.get_blob_client.return_value.upload_blob.side_effect = http_error(
        "The condition specified using HTTP conditional header(s) is not met.",
        "ConditionNotMet",
        412,
    )

    outcome = store.upload(
        CONTAINER, KEY, b"data", tags={"LocalId": "456"}, condition=tag_less_than("LocalId", "456")
    )

    assert isinstance(outcome, ConditionNotMet)
    assert "not met" in outcome.detail


def test_other_http_errors_are_other_error(store, service):
    error = http_error("Server busy", "ServerBusy", 503)
    service.get_blob_client.return_value.upload_blob.side_effect = error

    outcome = store.upload(CONTAINER, KEY, b"data")

    assert isinstance(outcome, OtherError)
    assert outcome.cause is error
    with pytest.raises(StoreError) as exc_info:
        outcome.raise_for_error("upload", KEY)
    assert exc_info.value.__cause__ is error


def test_create_container_ignores_existing(store, service):
    container_client = service.get_container_client.return_value
    container_client.create_container.side_effect = [None, ResourceExistsError("exists")]

    store.create_container_if_not_exists(CONTAINER)
    store.create_container_if_not_exists(CONTAINER)

    assert container_client.create_container.call_count == 2


def test_delete_container_ignores_missing(store, service):
    container_client = service.get_container_client.return_value
    container_client.delete_container.side_effect = [None, ResourceNotFoundError("gone")]

    store.delete_container_if_exists(CONTAINER)
    store.delete_container_if_exists(CONTAINER)

    service.get_container_client.assert_called_with(CONTAINER)


def test_delete_container_failure_raises_store_error(store, service):
    service.get_container_client.return_value.delete_container.side_effect = http_error(
        "Forbidden", "AuthorizationFailure", 403
    )

    with pytest.raises(StoreError) as exc_info:
        store.delete_container_if_exists(CONTAINER)

    assert exc_info.value.operation == "delete_container"


def test_download_wraps_chunks(store, service):
    downloader = service.get_blob_client.return_value.download_blob.return_value
    downloader.chunks.return_value = iter([b"Original ", b"content"])

    with store.download(CONTAINER, KEY) as stream:
        assert store.open_streams == 1
        assert stream.read() == b"Original content"
    assert store.open_streams == 0


def test_download_missing_blob_raises_not_found(store, service):
    service.get_blob_client.return_value.download_blob.side_effect = ResourceNotFoundError(
        "The specified blob does not exist."
    )

    with pytest.raises(NotFoundError) as exc_info:
        store.download(CONTAINER, KEY)

    assert exc_info.value.key == KEY
    assert store.open_streams == 0


def test_get_tags(store, service):
    service.get_blob_client.return_value.get_blob_tags.return_value = {"LocalId": "123"}

    assert store.get_tags(CONTAINER, KEY) == {"LocalId": "123"}


def test_exists_delegates_to_client(store, service):
    service.get_blob_client.return_value.exists.return_value = False
    service.get_container_client.return_value.exists.return_value = True

    assert not store.exists(CONTAINER, KEY)
    assert store.container_exists(CONTAINER)


def test_from_connection_string():
    with mock.patch("limbo_repro.stores.azure_blob.BlobServiceClient") as client_cls:
        store = AzureBlobObjectStore.from_connection_string("UseDevelopmentStorage=true")

    client_cls.from_connection_string.assert_called_once_with("UseDevelopmentStorage=true")
    assert store.client is client_cls.from_connection_string.return_value


def test_connection_failure_on_upload_is_other_error(store, service):
    error = ServiceRequestError("connection reset")
    service.get_blob_client.return_value.upload_blob.side_effect = error

    outcome = store.upload(
        CONTAINER, KEY, b"data", tags={"LocalId": "123"},
        condition=tag_less_than("LocalId", "123"),
    )

    assert isinstance(outcome, OtherError)
    assert outcome.cause is error


@pytest.mark.parametrize(
    "call, operation",
    [
        (lambda s: s.download(CONTAINER, KEY), "download"),
        (lambda s: s.get_tags(CONTAINER, KEY), "get_tags"),
        (lambda s: s.exists(CONTAINER, KEY), "exists"),
        (lambda s: s.create_container_if_not_exists(CONTAINER), "create_container"),
        (lambda s: s.delete_container_if_exists(CONTAINER), "delete_container"),
        (lambda s: s.container_exists(CONTAINER), "container_exists"),
    ],
)
def test_connection_failures_raise_store_error(store, service, call, operation):
    error = ServiceResponseError("connection aborted")
    blob_client = service.get_blob_client.return_value
    blob_client.download_blob.side_effect = error
    blob_client.get_blob_tags.side_effect = error
    blob_client.exists.side_effect = error
    container_client = service.get_container_client.return_value
    container_client.create_container.side_effect = error
    container_client.delete_container.side_effect = error
    container_client.exists.side_effect = error

    with pytest.raises(StoreError) as exc_info:
        call(store)

    assert exc_info.value.operation == operation
    assert exc_info.value.__cause__ is error
    assert store.open_streams == 0
