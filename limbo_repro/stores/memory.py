"""
In-process object store

Behaves like a blob service with tag-conditioned writes, including the
way the blob SDK uploads a body of unknown length. In "split" mode such an
upload goes out in two requests:

1. the first block is written as the blob, with the tags, under the
   condition
2. the commit rewrites the blob with the whole body, evaluating the
   condition again

The second evaluation sees the tag written by the first request, so a
"LocalId < 123" upload that tags the blob LocalId=123 rejects itself. The
client sees a 412 while the blob exists with the new tag: limbo. Bodies
with a known length (bytes, seekable streams) go out in one request and
are atomic. "atomic" mode sends every body in one request.

Transient lost acknowledgements can be injected with fail_next_acks(): the
write is applied, the response is lost, and the client retries it once.
"""

import hashlib
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional

from limbo_repro.conditions import Condition, coerce
from limbo_repro.errors import NotFoundError
from limbo_repro.outcomes import ConditionNotMet, OtherError, Success, WriteOutcome
from limbo_repro.stores.base import (
    ObjectStore,
    StoreCapabilities,
    is_replayable,
    read_block,
)

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 4 * 1024 * 1024


@dataclass
class StoredBlob:
    content: bytes
    tags: Dict[str, str] = field(default_factory=dict)
    etag: str = ""


class InMemoryObjectStore(ObjectStore):
    name = "memory"
    capabilities = StoreCapabilities(streams_uploads=True)

    def __init__(self, upload_mode: str = "split", block_size: int = DEFAULT_BLOCK_SIZE):
        super().__init__()
        if upload_mode not in ("split", "atomic"):
            raise ValueError(f"Unknown upload mode {upload_mode!r}")
        if block_size <= 0:
            raise ValueError("block_size must be positive")
        self.upload_mode = upload_mode
        self.block_size = block_size
        self._containers: Dict[str, Dict[str, StoredBlob]] = {}
        self._lock = threading.RLock()
        self._lost_acks = 0
        self._versions = itertools.count(1)
        self.requests = []

    def fail_next_acks(self, count: int = 1) -> None:
        """Lose the response of the next count write requests"""
        self._lost_acks += count

    # Containers

    def create_container_if_not_exists(self, container):
        with self._lock:
            if container not in self._containers:
                self._containers[container] = {}
                logger.debug(f"Created container {container}")

    def delete_container_if_exists(self, container):
        with self._lock:
            if self._containers.pop(container, None) is not None:
                logger.debug(f"Deleted container {container}")

    def container_exists(self, container):
        with self._lock:
            return container in self._containers

    # Blobs

    def _blobs(self, container: str, key: str, operation: str) -> Dict[str, StoredBlob]:
        try:
            return self._containers[container]
        except KeyError:
            raise NotFoundError(
                f"Container {container!r} does not exist",
                operation=operation,
                container=container,
                key=key,
            ) from None

    def _put(self, container, key, content, tags, condition) -> Optional[WriteOutcome]:
        """One write request, applied atomically; None when its acknowledgement is lost"""
        with self._lock:
            self.requests.append(("put", container, key, len(content)))
            blobs = self._containers.get(container)
            if blobs is None:
                return OtherError(f"ContainerNotFound: {container}")

            current = blobs.get(key)
            if condition is not None and current is not None:
                if not condition.evaluate(current.tags):
                    return ConditionNotMet(
                        f"{container}/{key}: condition {condition} not met "
                        f"by tags {current.tags}"
                    )

            etag = '"%s-%d"' % (hashlib.md5(content).hexdigest(), next(self._versions))
            blobs[key] = StoredBlob(bytes(content), dict(tags or {}), etag)

            if self._lost_acks:
                self._lost_acks -= 1
                return None
            return Success(etag)

    def _send(self, container, key, content, tags, condition) -> WriteOutcome:
        outcome = self._put(container, key, content, tags, condition)
        if outcome is None:
            logger.debug(f"Lost acknowledgement for {container}/{key}, retrying")
            outcome = self._put(container, key, content, tags, condition)
            if outcome is None:
                return OtherError(f"Timed out writing {container}/{key}")
        return outcome

    def upload(self, container, key, data, tags=None, condition: Optional[Condition] = None):
        condition = coerce(condition)
        if is_replayable(data) or self.upload_mode == "atomic":
            content = bytes(data) if isinstance(data, (bytes, bytearray, memoryview)) else data.read()
            return self._send(container, key, content, tags, condition)

        first = read_block(data, self.block_size)
        outcome = self._send(container, key, first, tags, condition)
        if not isinstance(outcome, Success):
            return outcome

        rest = data.read()
        return self._send(container, key, first + (rest or b""), tags, condition)

    def download(self, container, key):
        with self._lock:
            blob = self._blobs(container, key, "download").get(key)
            if blob is None:
                raise NotFoundError(
                    f"Blob {container}/{key} does not exist",
                    operation="download",
                    container=container,
                    key=key,
                )
            content = blob.content
        chunks = (content[i:i + self.block_size] for i in range(0, len(content), self.block_size))
        return self._track_stream(chunks)

    def get_tags(self, container, key):
        with self._lock:
            blob = self._blobs(container, key, "get_tags").get(key)
            if blob is None:
                raise NotFoundError(
                    f"Blob {container}/{key} does not exist",
                    operation="get_tags",
                    container=container,
                    key=key,
                )
            return dict(blob.tags)

    def exists(self, container, key):
        with self._lock:
            return key in self._containers.get(container, {})

    def blob(self, container: str, key: str) -> Optional[StoredBlob]:
        """Direct look at stored state, for assertions"""
        with self._lock:
            return self._containers.get(container, {}).get(key)
