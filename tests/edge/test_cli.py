"""
Command Line Tests

Tests the limbo-repro click commands against the in-memory backend:
- run: full scenario, summary lines, exit code
- step: single steps
- compare: presets, YAML backends file, markdown report
- configuration errors surfaced as click errors
"""

import pytest
from click.testing import CliRunner

from limbo_repro import cli
from limbo_repro.cli import main
from limbo_repro.errors import StoreError

SECRETS_ENV = ("REPRO_BACKEND", "AzureStorageConnectionString", "AZURE_STORAGE_CONNECTION_STRING")


@pytest.fixture
def runner(monkeypatch, tmp_path):
    for var in SECRETS_ENV:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("REPRO_SECRETS_FILE", str(tmp_path / "no-secrets.yaml"))
    return CliRunner()


def test_run_reproduces_limbo_on_memory_backend(runner):
    result = runner.invoke(main, ["--backend", "memory", "run"])

    print(result.output)
    assert result.exit_code == 0, result.output
    assert "Limbo reproduced: yes" in result.output
    assert "Workaround escaped limbo: yes" in result.output
    assert "Destination verified: yes" in result.output
    assert "is now in a limbo state" in result.output


def test_run_with_atomic_memory_store(runner, monkeypatch):
    monkeypatch.setenv("REPRO_MEMORY_UPLOAD_MODE", "atomic")

    result = runner.invoke(main, ["run"])

    assert result.exit_code == 0, result.output
    assert "Limbo reproduced: no" in result.output


def test_run_custom_local_ids(runner):
    result = runner.invoke(main, ["run", "--local-id", "5", "--overwrite-local-id", "7"])

    assert result.exit_code == 0, result.output
    assert "LocalId=7" in result.output


def test_step_reset_on_fresh_store(runner):
    result = runner.invoke(main, ["step", "reset"])

    assert result.exit_code == 0, result.output
    assert "Container 'repro' has been removed." in result.output


def test_step_race_without_seed_fails(runner):
    """
    Each step gets a fresh memory store, so the source is missing
    """
    result = runner.invoke(main, ["step", "race"])

    assert result.exit_code == 1
    assert "does not exist" in result.output


def test_azure_backend_without_connection_string(runner):
    result = runner.invoke(main, ["--backend", "azure", "run"])

    assert result.exit_code == 1
    assert "connection string" in result.output


def test_compare_presets_writes_report(runner, tmp_path):
    report = tmp_path / "report.md"

    result = runner.invoke(
        main, ["compare", "-b", "memory", "-b", "memory-atomic", "-r", str(report)]
    )

    assert result.exit_code == 0, result.output
    text = report.read_text()
    assert "| **memory** |" in text
    assert "| **memory-atomic** |" in text
    assert "Limbo state reproduced on: memory." in text


def test_compare_unknown_preset(runner, tmp_path):
    result = runner.invoke(main, ["compare", "-b", "gcs", "-r", str(tmp_path / "r.md")])

    assert result.exit_code != 0
    assert "Unknown backend" in result.output


def test_compare_backends_file_skips_unconfigured(runner, tmp_path):
    backends = tmp_path / "backends.yaml"
    backends.write_text(
        "split:\n"
        "  backend: memory\n"
        "  container: split-run\n"
        "broken-azure:\n"
        "  backend: azure\n"
    )
    report = tmp_path / "report.md"

    result = runner.invoke(
        main, ["compare", "--backends-file", str(backends), "-r", str(report)]
    )

    assert result.exit_code == 0, result.output
    assert "Skipping broken-azure" in result.output
    assert "| **split** |" in report.read_text()


def test_local_ids_compare_as_strings(runner):
    help_result = runner.invoke(main, ["run", "--help"])
    assert "ids compare as strings" in " ".join(help_result.output.split())

    result = runner.invoke(main, ["run", "--local-id", "99", "--overwrite-local-id", "123"])

    print(result.output)
    assert result.exit_code == 0, result.output
    assert "does not sort after '99'" in result.output
    assert "Workaround escaped limbo: no" in result.output
    assert "Destination verified: yes" in result.output


def test_run_reports_store_failure_without_traceback(runner, monkeypatch):
    real_open_store = cli.open_store

    def unreachable_store(config):
        store = real_open_store(config)

        def delete_container_if_exists(container):
            raise StoreError(
                "connection reset", operation="delete_container", container=container
            )

        store.delete_container_if_exists = delete_container_if_exists
        return store

    monkeypatch.setattr(cli, "open_store", unreachable_store)

    result = runner.invoke(main, ["run"])

    assert result.exit_code == 1
    assert "Error: connection reset" in result.output
    assert not isinstance(result.exception, StoreError)


def test_compare_continues_after_store_failure(runner, tmp_path, monkeypatch):
    real_open_store = cli.open_store

    def flaky_store(config):
        store = real_open_store(config)
        if config.memory_upload_mode == "split":
            def delete_container_if_exists(container):
                raise StoreError(
                    "connection reset", operation="delete_container", container=container
                )

            store.delete_container_if_exists = delete_container_if_exists
        return store

    monkeypatch.setattr(cli, "open_store", flaky_store)
    report = tmp_path / "report.md"

    result = runner.invoke(
        main, ["compare", "-b", "memory", "-b", "memory-atomic", "-r", str(report)]
    )

    assert result.exit_code == 0, result.output
    assert "Error running memory: connection reset" in result.output
    assert "| **memory-atomic** |" in report.read_text()
