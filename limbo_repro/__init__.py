"""
Reproduction harness for the conditional upload "limbo" state

A tag-conditioned blob upload that fails partway can leave the destination
blob present, carrying the new tag, while the client was told the write
failed. ConditionalCopyHarness drives a store through that race step by
step; run_scenario() runs the whole sequence.
"""

from limbo_repro.conditions import parse as parse_condition, tag_less_than
from limbo_repro.config import HarnessConfig, load_config
from limbo_repro.errors import ConfigurationError, NotFoundError, ReproError, StoreError
from limbo_repro.harness import (
    BlobSnapshot,
    ConditionalCopyHarness,
    DestinationState,
    ScenarioReport,
    run_scenario,
)
from limbo_repro.outcomes import ConditionNotMet, OtherError, Success, WriteOutcome
from limbo_repro.stores import InMemoryObjectStore, ObjectStore, open_store

__version__ = "0.1.0"

__all__ = [
    "BlobSnapshot",
    "ConditionNotMet",
    "ConditionalCopyHarness",
    "ConfigurationError",
    "DestinationState",
    "HarnessConfig",
    "InMemoryObjectStore",
    "NotFoundError",
    "ObjectStore",
    "OtherError",
    "ReproError",
    "ScenarioReport",
    "StoreError",
    "Success",
    "WriteOutcome",
    "load_config",
    "open_store",
    "parse_condition",
    "run_scenario",
    "tag_less_than",
]
