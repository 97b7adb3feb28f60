"""
Tests for the heartbeat orchestrator and its default steps

Failure isolation, dependency skipping, progress events, persisted run
summaries and backups.
"""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, Mock


def _ok(detail="done", produced=True):
    from triage.heartbeat import StepOutcome

    async def run(context):
        return StepOutcome(detail=detail, produced=produced)

    return run


def _failing(error):
    async def run(context):
        raise error

    return run


class TestOrchestrator:
    @pytest.mark.asyncio
    async def test_failure_does_not_stop_later_steps(self, store):
        from triage.common.activity import ActivityLog
        from triage.heartbeat import HeartbeatOrchestrator, Step

        orchestrator = HeartbeatOrchestrator(
            [Step("sync:slack", _failing(RuntimeError("rate limited"))), Step("classify", _ok())],
            ActivityLog(store),
        )

        result = await orchestrator.run()

        assert result.steps["sync:slack"].success is False
        assert result.steps["sync:slack"].error == "rate limited"
        assert result.steps["classify"].success is True
        assert result.all_steps_succeeded is False

    @pytest.mark.asyncio
    async def test_dependent_step_skipped(self):
        from triage.heartbeat import HeartbeatOrchestrator, Step
        embeddings = AsyncMock()

        orchestrator = HeartbeatOrchestrator([
            Step("index", _failing(RuntimeError("index down"))),
            Step("embeddings", embeddings, depends_on=("index",)),
        ])
        result = await orchestrator.run()

        assert result.steps["embeddings"].skipped is True
        assert result.steps["embeddings"].detail == "index failed"
        embeddings.assert_not_called()

    @pytest.mark.asyncio
    async def test_dependency_without_output_skips(self):
        from triage.heartbeat import HeartbeatOrchestrator, Step
        orchestrator = HeartbeatOrchestrator([
            Step("index", _ok(produced=False)),
            Step("embeddings", _ok(), depends_on=("index",)),
        ])
        result = await orchestrator.run()
        assert result.steps["embeddings"].detail == "index produced no output"
        assert result.all_steps_succeeded is True

    @pytest.mark.asyncio
    async def test_disabled_step_skipped_with_reason(self):
        from triage.heartbeat import HeartbeatOrchestrator, Step
        result = await HeartbeatOrchestrator([Step("extraction", None, skip_reason="not configured")]).run()
        assert result.steps["extraction"].skipped is True
        assert result.steps["extraction"].detail == "not configured"

    @pytest.mark.asyncio
    async def test_transient_error_becomes_warning(self):
        from triage.common.errors import TransientConnectorError
        from triage.heartbeat import HeartbeatOrchestrator, Step
        orchestrator = HeartbeatOrchestrator([
            Step("sync:email", _failing(TransientConnectorError("email", "503 from upstream"))),
        ])
        result = await orchestrator.run()
        assert result.steps["sync:email"].success is False
        assert "will retry next heartbeat" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_step_timeout(self):
        import asyncio
        from triage.common.config import HeartbeatConfig
        from triage.heartbeat import HeartbeatOrchestrator, Step

        async def slow(context):
            await asyncio.sleep(5)

        result = await HeartbeatOrchestrator(
            [Step("index", slow)], config=HeartbeatConfig(step_timeout_seconds=0.01)
        ).run()
        assert "timed out" in result.steps["index"].error

    @pytest.mark.asyncio
    async def test_progress_events(self):
        from triage.heartbeat import HeartbeatOrchestrator, Step, StepStatus
        events = []
        await HeartbeatOrchestrator([
            Step("backup", _ok("triage-2025-03-10.json")),
            Step("index", _failing(ValueError("bad"))),
            Step("extraction", None),
        ]).run(on_progress=events.append)

        assert [(e.step, e.status) for e in events] == [
            ("backup", StepStatus.START),
            ("backup", StepStatus.DONE),
            ("index", StepStatus.START),
            ("index", StepStatus.ERROR),
            ("extraction", StepStatus.SKIP),
        ]

    @pytest.mark.asyncio
    async def test_broken_progress_callback_is_ignored(self):
        from triage.heartbeat import HeartbeatOrchestrator, Step
        callback = Mock(side_effect=RuntimeError("ui closed"))
        result = await HeartbeatOrchestrator([Step("index", _ok())]).run(on_progress=callback)
        assert result.steps["index"].success is True

    @pytest.mark.asyncio
    async def test_summary_persisted(self, store, clock):
        from triage.common.activity import ActivityLog
        from triage.common.schemas import EventType
        from triage.heartbeat import HeartbeatOrchestrator, Step

        orchestrator = HeartbeatOrchestrator(
            [Step("index", _failing(RuntimeError("boom"))), Step("classify", _ok("3 classified"))],
            ActivityLog(store),
            clock=clock,
        )
        await orchestrator.run()

        entry = store.list_activity(EventType.HEARTBEAT_RUN)[0]
        assert "failures: index" in entry.description
        assert entry.metadata["steps"]["index"]["error"] == "boom"
        assert entry.metadata["steps"]["classify"]["detail"] == "3 classified"
        assert entry.metadata["all_steps_succeeded"] is False

    def test_duplicate_step_names_rejected(self):
        from triage.heartbeat import HeartbeatOrchestrator, Step
        with pytest.raises(ValueError):
            HeartbeatOrchestrator([Step("index", _ok()), Step("index", _ok())])


class TestSteps:
    def test_write_backup_prunes_old_files(self, store, tmp_path, clock):
        from triage.heartbeat import write_backup
        for day in range(1, 4):
            (tmp_path / f"triage-2025-03-0{day}.json").write_text("{}")

        path = write_backup(store, tmp_path, retention=2, now=clock())

        assert path.name == "triage-2025-03-10.json"
        assert sorted(p.name for p in tmp_path.glob("triage-*.json")) == [
            "triage-2025-03-03.json",
            "triage-2025-03-10.json",
        ]
        assert write_backup(store, tmp_path, retention=2, now=clock()) is None

    def test_callable_step_without_fn_is_disabled(self):
        from triage.heartbeat import callable_step
        step = callable_step("index", None)
        assert step.enabled is False

    @pytest.mark.asyncio
    async def test_callable_step_accepts_sync_and_async(self):
        from triage.heartbeat import HeartbeatContext, callable_step

        sync_outcome = await callable_step("index", lambda: 4).run(HeartbeatContext())
        async_outcome = await callable_step("embeddings", AsyncMock(return_value=[])).run(HeartbeatContext())

        assert sync_outcome.detail == "4 updated"
        assert async_outcome.produced is False

    @pytest.mark.asyncio
    async def test_sync_step_reports_counts(self, store):
        from triage.common.config import TriageConfig
        from triage.connectors import GmailConnector
        from triage.heartbeat import HeartbeatContext, sync_step
        from triage.intake import IngestionGate

        async def fetcher(config):
            return [
                {"threadId": "t1", "from": {"email": "a@b.com"}, "subject": "hi"},
                {"threadId": "t2"},
            ]

        context = HeartbeatContext()
        step = sync_step(GmailConnector(fetcher=fetcher), TriageConfig(), IngestionGate(store))
        outcome = await step.run(context)

        assert step.name == "sync:email"
        assert outcome.detail == "1 new, 0 skipped, 1 errors"
        assert "1 items failed" in outcome.warnings[0]
        assert context.sync_results["email"].synced == 1

    def test_sync_step_skips_disabled_and_unconfigured(self, store):
        from triage.common.config import TriageConfig
        from triage.connectors import LinearConnector, SlackConnector
        from triage.heartbeat import sync_step
        from triage.intake import IngestionGate

        config = TriageConfig()
        config.heartbeat.skip_connectors = ["slack"]
        gate = IngestionGate(store)

        assert sync_step(SlackConnector(fetcher=AsyncMock()), config, gate).skip_reason == "disabled in config"
        assert sync_step(LinearConnector(), config, gate).skip_reason == "linear not configured"

    def test_default_step_order(self, store, tmp_path):
        from triage.common.config import TriageConfig
        from triage.connectors import GmailConnector, SlackConnector
        from triage.heartbeat import default_steps
        from triage.intake import IngestionGate

        config = TriageConfig()
        config.heartbeat.backup_dir = str(tmp_path)
        steps = default_steps(
            store, config, IngestionGate(store), [GmailConnector(), SlackConnector()], AsyncMock()
        )

        assert [s.name for s in steps] == [
            "backup", "extraction", "sync:email", "sync:slack", "classify", "index", "embeddings",
        ]
        assert steps[-1].depends_on == ("index",)
