import json

import pytest
from click.testing import CliRunner

from jobqueue.cli import cli


@pytest.fixture
def invoke(db_url):
    runner = CliRunner()

    def run(*args):
        return runner.invoke(cli, ["--db-url", db_url, *args], obj={})

    result = run("init-db")
    assert result.exit_code == 0, result.output
    return run


def stats(invoke) -> dict:
    result = invoke("stats", "--json")
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


def test_create_job(invoke):
    result = invoke("create-job", "generation", '{"prompt": "hi"}', "5", "2", "tenant-1", "user-1")

    assert result.exit_code == 0, result.output
    assert "Enqueued job 1 -> generation (priority=5, max_retries=2)" in result.output
    assert stats(invoke)["counts"]["pending"] == 1
    assert stats(invoke)["type_counts"] == {"generation": 1}


def test_create_job_with_defaults_and_delay(invoke):
    result = invoke("create-job", "generation", "{}", "--delay", "60")

    assert result.exit_code == 0, result.output
    assert "priority=0, max_retries=3, delay=60.0s" in result.output


@pytest.mark.parametrize("payload", ["not json", "[1, 2]"])
def test_create_job_rejects_bad_payload(invoke, payload):
    result = invoke("create-job", "generation", payload)

    assert result.exit_code == 1
    assert "PAYLOAD" in result.output


def test_cleanup_enqueues_standard_set(invoke):
    result = invoke("cleanup")

    assert result.exit_code == 0, result.output
    assert "Enqueued 3 cleanup jobs" in result.output
    assert "old_jobs (keep 30 days)" in result.output
    assert stats(invoke)["type_counts"] == {"cleanup": 3}


def test_stats_text_output(invoke):
    invoke("create-job", "generation", "{}")

    result = invoke("stats", "--window-hours", "2")

    assert result.exit_code == 0, result.output
    assert "pending" in result.output
    assert "Avg completion (2h): -" in result.output


def test_stats_for_tenant(invoke):
    invoke("create-job", "generation", "{}", "0", "3", "a")
    invoke("create-job", "generation", "{}", "0", "3", "b")

    result = invoke("stats", "--json", "--tenant-id", "a")

    assert json.loads(result.output)["total"] == 1


def test_cancel(invoke):
    invoke("create-job", "generation", "{}")

    assert invoke("cancel", "1").exit_code == 0
    result = invoke("cancel", "1")
    assert result.exit_code == 1
    assert "not found or not pending" in result.output


def test_retry_requires_failed_job(invoke):
    invoke("create-job", "generation", "{}")

    result = invoke("retry", "1")

    assert result.exit_code == 1
    assert "not found or not failed" in result.output


def test_schedules_listing(invoke):
    result = invoke("schedules")

    assert result.exit_code == 0
    assert "No schedules registered" in result.output


def test_logs(invoke):
    invoke("create-job", "generation", "{}")

    result = invoke("logs", "1")

    assert result.exit_code == 0, result.output
    assert "enqueued" in result.output
    assert "Job enqueued" in result.output

    missing = invoke("logs", "42")
    assert missing.exit_code == 1
    assert "Job 42 not found" in missing.output
