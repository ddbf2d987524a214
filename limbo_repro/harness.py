"""
Conditional copy harness

Drives a store through the conditional-upload race, one step at a time:

    reset -> seed_source -> racing_conditioned_copy
          -> conditioned_overwrite_with_buffering -> force_overwrite

Steps are meant to run in that order and share nothing but the store
connection. Each one narrates what happened through the module logger and
returns the write outcome so callers can assert on it.

Destination states:

    ABSENT   --race, rejected, nothing written-->  ABSENT
    ABSENT   --race, rejected, blob written----->  LIMBO
    LIMBO    --buffered overwrite--------------->  LIMBO or RESOLVED
    any      --force overwrite------------------>  RESOLVED
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from limbo_repro.conditions import tag_less_than
from limbo_repro.config import HarnessConfig
from limbo_repro.errors import StoreError
from limbo_repro.outcomes import ConditionNotMet, Success, WriteOutcome, describe
from limbo_repro.stores.base import ObjectStore, materialize

logger = logging.getLogger(__name__)


class DestinationState(str, Enum):
    ABSENT = "absent"
    LIMBO = "limbo"
    RESOLVED = "resolved"


@dataclass
class StepRecord:
    step: str
    outcome: Optional[WriteOutcome]
    state: DestinationState
    message: str


@dataclass(frozen=True)
class BlobSnapshot:
    content: bytes
    tags: Dict[str, str]


@dataclass
class ScenarioReport:
    """What a full run observed, step by step"""

    backend: str
    records: List[StepRecord] = field(default_factory=list)
    final: Optional[BlobSnapshot] = None
    expected_content: bytes = b""

    def record(self, step: str) -> Optional[StepRecord]:
        for record in self.records:
            if record.step == step:
                return record
        return None

    @property
    def limbo_reproduced(self) -> bool:
        """The racing copy was rejected yet left the destination behind"""
        race = self.record("racing_conditioned_copy")
        return bool(
            race
            and isinstance(race.outcome, ConditionNotMet)
            and race.state == DestinationState.LIMBO
        )

    @property
    def workaround_escaped_limbo(self) -> bool:
        buffered = self.record("conditioned_overwrite_with_buffering")
        return bool(buffered and isinstance(buffered.outcome, Success))

    @property
    def verified(self) -> bool:
        """Destination ended up as a plain copy of the source"""
        return (
            self.final is not None
            and self.final.content == self.expected_content
            and self.final.tags == {}
        )


class ConditionalCopyHarness:
    def __init__(self, store: ObjectStore, config: Optional[HarnessConfig] = None):
        self.store = store
        self.config = config or HarnessConfig()
        self.state = DestinationState.ABSENT
        self.history: List[StepRecord] = []

    @property
    def container(self) -> str:
        return self.config.container

    @property
    def source_key(self) -> str:
        return self.config.source_key

    @property
    def destination_key(self) -> str:
        return self.config.destination_key

    def _path(self, key: str) -> str:
        return f"{self.container}/{key}"

    def _narrate(self, step: str, outcome: Optional[WriteOutcome], message: str) -> StepRecord:
        logger.info(message)
        record = StepRecord(step, outcome, self.state, message)
        self.history.append(record)
        return record

    def _conditioned(self, local_id):
        """Tag the write with local_id; only replace blobs tagged with a lower one"""
        local_id = str(local_id)
        tag = self.config.tag_name
        return {tag: local_id}, tag_less_than(tag, local_id)

    def _state_after_rejection(self) -> DestinationState:
        if self.store.exists(self.container, self.destination_key):
            return DestinationState.LIMBO
        return DestinationState.ABSENT

    def _require_success(self, outcome: WriteOutcome, operation: str, key: str) -> Success:
        outcome.raise_for_error(operation, key)
        if not isinstance(outcome, Success):
            raise StoreError(
                f"Unconditioned write to {self._path(key)} was rejected: {outcome.detail}",
                operation=operation,
                container=self.container,
                key=key,
            )
        return outcome

    # Steps

    def reset(self) -> None:
        """Delete the working container; safe when it does not exist"""
        self.store.delete_container_if_exists(self.container)
        self.state = DestinationState.ABSENT
        self._narrate("reset", None, f"Container '{self.container}' has been removed.")

    def seed_source(self) -> WriteOutcome:
        """Create the container and the untagged source blob"""
        self.store.create_container_if_not_exists(self.container)
        content = self.config.source_content.encode("utf-8")
        outcome = self.store.upload(self.container, self.source_key, content)
        self._require_success(outcome, "seed_source", self.source_key)
        self._narrate(
            "seed_source", outcome, f"Blob '{self._path(self.source_key)}' has been created."
        )
        return outcome

    def racing_conditioned_copy(self, local_id=None) -> WriteOutcome:
        """
        Copy the source to the destination by handing the download stream
        straight to the upload, tagged and conditioned on local_id.

        A rejected condition is what this step is here to observe: it is
        reported, not raised.
        """
        if local_id is None:
            local_id = self.config.racing_local_id
        tags, condition = self._conditioned(local_id)

        with self.store.download(self.container, self.source_key) as stream:
            outcome = self.store.upload(
                self.container, self.destination_key, stream, tags=tags, condition=condition
            )
        outcome.raise_for_error("racing_conditioned_copy", self.destination_key)

        destination = self._path(self.destination_key)
        if isinstance(outcome, ConditionNotMet):
            self.state = self._state_after_rejection()
            if self.state == DestinationState.LIMBO:
                message = f"The blob '{destination}' is now in a limbo state."
            else:
                message = f"The copy to '{destination}' was rejected and nothing was written."
        else:
            self.state = DestinationState.RESOLVED
            message = f"Blob '{destination}' has been copied with {condition.tag}={local_id}."
        self._narrate("racing_conditioned_copy", outcome, message)
        return outcome

    def conditioned_overwrite_with_buffering(self, local_id=None) -> WriteOutcome:
        """
        Same conditioned write with a newer local_id, but the source is
        drained into memory before the upload starts.

        Success and a rejected condition are both valid completions.
        """
        if local_id is None:
            local_id = self.config.overwrite_local_id
        tags, condition = self._conditioned(local_id)

        with self.store.download(self.container, self.source_key) as stream:
            content = materialize(stream)
        outcome = self.store.upload(
            self.container, self.destination_key, content, tags=tags, condition=condition
        )
        outcome.raise_for_error("conditioned_overwrite_with_buffering", self.destination_key)

        source = self._path(self.source_key)
        destination = self._path(self.destination_key)
        if isinstance(outcome, ConditionNotMet):
            self.state = self._state_after_rejection()
            message = (
                f"Failed to copy '{source}' to '{destination}' despite the workaround. "
                f"Reason: condition not met (412). {outcome.detail}"
            )
        else:
            self.state = DestinationState.RESOLVED
            message = f"Blob '{destination}' has been overwritten with {condition.tag}={local_id}."
        self._narrate("conditioned_overwrite_with_buffering", outcome, message)
        return outcome

    def force_overwrite(self) -> WriteOutcome:
        """Unconditioned, untagged overwrite of the destination"""
        outcome = self.store.copy(self.container, self.source_key, self.destination_key)
        self._require_success(outcome, "force_overwrite", self.destination_key)
        self.state = DestinationState.RESOLVED
        self._narrate(
            "force_overwrite",
            outcome,
            f"Blob '{self._path(self.destination_key)}' has been overwritten without tags; "
            f"the buffered overwrite can run again.",
        )
        return outcome

    def inspect_destination(self) -> Optional[BlobSnapshot]:
        """Content and tags of the destination, None when it does not exist"""
        if not self.store.exists(self.container, self.destination_key):
            return None
        return BlobSnapshot(
            content=self.store.read_bytes(self.container, self.destination_key),
            tags=self.store.get_tags(self.container, self.destination_key),
        )


def run_scenario(
    harness: ConditionalCopyHarness, local_id=None, overwrite_local_id=None
) -> ScenarioReport:
    """Run every step in order and collect what each one observed"""
    start = len(harness.history)
    harness.reset()
    harness.seed_source()
    harness.racing_conditioned_copy(local_id)
    harness.conditioned_overwrite_with_buffering(overwrite_local_id)
    harness.force_overwrite()

    report = ScenarioReport(
        backend=harness.store.name,
        records=harness.history[start:],
        final=harness.inspect_destination(),
        expected_content=harness.config.source_content.encode("utf-8"),
    )
    for record in report.records:
        logger.debug(f"{record.step}: {describe(record.outcome) if record.outcome else '-'}")
    return report
