"""
Exception taxonomy for the limbo reproduction harness

- ReproError: base class for everything raised by this package
- ConfigurationError: missing or invalid harness configuration
- StoreError: the object store reported a failure we do not handle
- NotFoundError: a requested container or key is absent
"""

from typing import Optional


class ReproError(Exception):
    """Base class for harness errors"""


class ConfigurationError(ReproError):
    """Configuration is missing a required value or holds an invalid one"""


class StoreError(ReproError):
    """
    A store-level failure: auth, throttling, network, unexpected status.

    Always fatal for the step that hit it. Raise with chaining
    (``raise StoreError(...) from exc``) so the SDK error stays visible.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        container: Optional[str] = None,
        key: Optional[str] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.container = container
        self.key = key


class NotFoundError(StoreError):
    """Requested container or key does not exist"""
