import asyncio
import logging

import pytest

from ingest.backend_client import BackendError, Snapshot
from ingest.refresh import SnapshotRefresher, poll_notifications
from models.quiz_models import InvalidRecord
from settings import Settings
from mock_data import QUIZZES, ROSTER, scenario_submissions


class FakeBackend:
    def __init__(self, failures=()):
        self.calls = 0
        self.failures = set(failures)

    async def fetch_snapshot(self):
        self.calls += 1
        if self.calls in self.failures:
            raise BackendError("backend down")
        return Snapshot(students=ROSTER, quizzes=QUIZZES, submissions=scenario_submissions(),
                        skipped=[InvalidRecord(record_id="row 9", reason="missing student id")])


async def burst(count):
    for i in range(count):
        yield i


@pytest.fixture
def config():
    return Settings(debounce_seconds=0.01)


class TestSnapshotRefresher:
    @pytest.mark.asyncio
    async def test_refresh_builds_and_publishes_report(self, config):
        reports = []
        refresher = SnapshotRefresher(FakeBackend().fetch_snapshot, reports.append, config)
        report = await refresher.refresh()

        assert reports == [report]
        assert refresher.last_report is report
        assert [e.display_name for e in report.leaderboard][:2] == ["Bob", "Alice"]
        assert [s.record_id for s in report.skipped] == ["row 9"]

    @pytest.mark.asyncio
    async def test_burst_is_debounced_into_one_refresh(self, config):
        backend = FakeBackend()
        refresher = SnapshotRefresher(backend.fetch_snapshot, lambda report: None, config)
        await refresher.run(burst(5))
        assert backend.calls == 2
        assert refresher.refresh_count == 2

    @pytest.mark.asyncio
    async def test_separate_bursts_refresh_separately(self, config):
        async def two_bursts():
            yield 1
            yield 2
            await asyncio.sleep(0.2)
            yield 3

        backend = FakeBackend()
        refresher = SnapshotRefresher(backend.fetch_snapshot, lambda report: None, config)
        await refresher.run(two_bursts())
        assert backend.calls == 3

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_report(self, config, caplog):
        reports = []
        refresher = SnapshotRefresher(FakeBackend(failures={2}).fetch_snapshot, reports.append, config)
        with caplog.at_level(logging.ERROR):
            last = await refresher.run(burst(1))

        assert len(reports) == 1
        assert last is reports[0]
        assert "backend down" in caplog.text

    @pytest.mark.asyncio
    async def test_callback_failure_is_logged(self, config, caplog):
        calls = []

        def on_report(report):
            calls.append(report)
            if len(calls) > 1:
                raise RuntimeError("renderer crashed")

        refresher = SnapshotRefresher(FakeBackend().fetch_snapshot, on_report, config)
        with caplog.at_level(logging.ERROR):
            await refresher.run(burst(1))

        assert len(calls) == 2
        assert "Debounced refresh failed" in caplog.text
        assert "renderer crashed" in caplog.text

    @pytest.mark.asyncio
    async def test_explicit_debounce_overrides_settings(self, config):
        refresher = SnapshotRefresher(FakeBackend().fetch_snapshot, lambda report: None,
                                      config, debounce_seconds=0)
        assert refresher.debounce_seconds == 0


class TestPollNotifications:
    @pytest.mark.asyncio
    async def test_ticks(self):
        ticks = [tick async for tick in poll_notifications(0, limit=3)]
        assert ticks == [0, 1, 2]
