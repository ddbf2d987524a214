"""
Test fixture helper

Hands out uniquely named containers (so runs against a shared live
account do not collide), builds harnesses bound to them and removes
every container it created on cleanup().
"""

from limbo_repro.config import HarnessConfig
from limbo_repro.harness import ConditionalCopyHarness
from tests.common.test_utils import random_string

MAX_CONTAINER_NAME = 63


class TestFixture:
    __test__ = False

    def __init__(self, store, config: HarnessConfig):
        self.store = store
        self.config = config
        self.containers = []

    def generate_container_name(self, suffix):
        name = f"{self.config.container}-{suffix}-{random_string(6)}".lower()
        if len(name) > MAX_CONTAINER_NAME:
            name = f"{name[:MAX_CONTAINER_NAME - 7]}-{random_string(6)}"
        self.containers.append(name)
        return name

    def harness(self, suffix, **changes):
        """Harness working in a fresh container of its own"""
        config = self.config.replace(container=self.generate_container_name(suffix), **changes)
        return ConditionalCopyHarness(self.store, config)

    def cleanup(self):
        for container in self.containers:
            try:
                self.store.delete_container_if_exists(container)
            except Exception as e:
                print(f"Warning: failed to delete container {container}: {e}")
        self.containers = []
