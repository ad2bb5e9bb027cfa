"""
Tests for the CLI runner
Argument handling and every run mode, with MongoDB swapped for the in-memory store.
"""
import pytest

from deal_intel.core import cli_runner
from deal_intel.core.intelligence_pipeline import IntelligencePipeline, PipelineResult
from tests.fakes import FakeGateway


@pytest.fixture
def pipeline(store, settings):
    return IntelligencePipeline(store=store, gateway=FakeGateway(), settings=settings)


@pytest.fixture(autouse=True)
def offline(monkeypatch, pipeline):
    """Route the runner to the in-memory pipeline and keep loguru untouched."""
    async def build_pipeline():
        return pipeline

    async def disconnect():
        return None

    monkeypatch.setattr(cli_runner, "build_pipeline", build_pipeline)
    monkeypatch.setattr(cli_runner.db_manager, "disconnect", disconnect)
    monkeypatch.setattr(cli_runner, "configure_logging", lambda: None)


class TestMain:

    def test_no_activity_ids_prints_usage(self, capsys):
        assert cli_runner.main(["--queue"]) == 2
        assert "usage" in capsys.readouterr().out

    def test_direct_run_succeeds(self, store, capsys):
        assert cli_runner.main(["activity-email-1"]) == 0

        out = capsys.readouterr().out
        assert "Activity activity-email-1" in out
        assert "Committed:        True" in out
        assert store.commit_count == 1

    def test_direct_run_reports_missing_activity(self, store):
        assert cli_runner.main(["missing"]) == 1
        assert store.commit_count == 0

    def test_reprocess_rebuilds_deal(self, store, capsys):
        assert cli_runner.main(["--reprocess", "deal-acme"]) == 0

        out = capsys.readouterr().out
        assert "Deals deal-acme: replayed=1, failed=0" in out
        assert store.activities["activity-email-1"].has_receipt("contact-ana", "deal-acme")

    def test_reprocess_unknown_deal_fails(self):
        assert cli_runner.main(["--reprocess", "deal-missing"]) == 1


@pytest.mark.asyncio
class TestRunQueued:

    async def test_queued_activity_is_committed(self, store, capsys):
        failures = await cli_runner.run_queued(["activity-email-1"])

        assert failures == 0
        assert store.commit_count == 1
        assert "completed=1, dead_letter=0" in capsys.readouterr().out

    async def test_missing_activity_is_dead_lettered(self, store, capsys):
        failures = await cli_runner.run_queued(["activity-email-1", "missing"])

        assert failures == 1
        assert store.commit_count == 1
        assert "completed=1, dead_letter=1" in capsys.readouterr().out


class TestPrintResult:

    def test_skipped_pairs_are_listed(self, capsys):
        result = PipelineResult(
            activity_id="activity-email-1",
            discovered=2,
            processed=1,
            committed=True,
            skipped={"contact-ben:deal-acme": "impact scoring failed"},
        )

        cli_runner.print_result(result)

        out = capsys.readouterr().out
        assert "Pairs discovered: 2" in out
        assert "Skipped contact-ben:deal-acme: impact scoring failed" in out
