"""
Typed results of store write operations

Writes never raise for a rejected precondition. Callers branch on the
variant instead of comparing provider error codes:

    outcome = store.upload(container, key, data, tags, condition)
    if isinstance(outcome, ConditionNotMet):
        ...
"""

from dataclasses import dataclass
from typing import Optional, Union

from limbo_repro.errors import StoreError


@dataclass(frozen=True)
class Success:
    """The write was applied"""

    etag: Optional[str] = None

    def raise_for_error(self, operation: str = "upload", key: Optional[str] = None):
        return self


@dataclass(frozen=True)
class ConditionNotMet:
    """The store rejected a conditioned write (HTTP 412 equivalent)"""

    detail: str = ""

    def raise_for_error(self, operation: str = "upload", key: Optional[str] = None):
        return self


@dataclass(frozen=True)
class OtherError:
    """Any other store failure; fatal once it reaches the harness"""

    detail: str
    cause: Optional[BaseException] = None

    def raise_for_error(self, operation: str = "upload", key: Optional[str] = None):
        raise StoreError(self.detail, operation=operation, key=key) from self.cause


WriteOutcome = Union[Success, ConditionNotMet, OtherError]


def describe(outcome: WriteOutcome) -> str:
    """Short label used in narration and reports"""
    if isinstance(outcome, Success):
        return "success"
    if isinstance(outcome, ConditionNotMet):
        return "condition-not-met"
    return f"error: {outcome.detail}"
