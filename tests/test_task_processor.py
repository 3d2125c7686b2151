"""Tests for TaskProcessor — dispatch, routing, failure policy and recovery."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from cadence.delivery.store import MessageStore
from cadence.directory.context import ContextLoader
from cadence.directory.store import DirectoryStore
from cadence.generation.service import GenerationError, GenerationRequest
from cadence.recurrence import to_iso
from cadence.tasks.models import ScheduledTask
from cadence.tasks.processor import NO_RESPONSE_ERROR, STALE_ERROR, TaskProcessor
from cadence.tasks.store import TaskStore

pytestmark = pytest.mark.usefixtures("_no_turso")

# Monday 2026-03-09, 09:00 US-Eastern (EDT).
NOW = datetime(2026, 3, 9, 13, 0, tzinfo=UTC)
TOMORROW = "2026-03-10T13:00:00.000+00:00"


class _FakeGenerator:
    """Returns a fixed reply; fails or goes blank for prompts naming selected titles."""

    def __init__(self, reply: str = "**Pipeline**\n- 12 open deals") -> None:
        self.reply = reply
        self.fail_titles: set[str] = set()
        self.blank_titles: set[str] = set()
        self.requests: list[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        if any(f'Task: "{t}"' in request.prompt for t in self.fail_titles):
            raise GenerationError("Webhook failed: 502", status_code=502)
        if any(f'Task: "{t}"' in request.prompt for t in self.blank_titles):
            return ""
        return self.reply


class _Env:
    def __init__(self, db_path: Path) -> None:
        self.directory = DirectoryStore(db_path=db_path)
        self.tasks = TaskStore(db_path=db_path)
        self.messages = MessageStore(db_path=db_path)
        self.loader = ContextLoader(self.directory)
        self.generator = _FakeGenerator()

    def processor(self, **kwargs) -> TaskProcessor:
        options = {
            "batch_size": 10,
            "window_seconds": 120,
            "lease_seconds": 900,
            "stale_seconds": 1800,
            "failure_policy": "advance",
            "default_timezone": "America/New_York",
        }
        generator = kwargs.pop("generator", self.generator)
        options.update(kwargs)
        return TaskProcessor(self.tasks, self.messages, self.loader, generator, **options)

    async def add_task(self, task_id: str, **kwargs) -> ScheduledTask:
        defaults = {
            "user_id": "ana",
            "team_id": "team-sales",
            "title": f"Task {task_id}",
            "ai_prompt": "Summarize my open pipeline",
            "frequency": "daily",
            "schedule_hour": 9,
            "schedule_minute": 0,
            "timezone": "America/New_York",
            "next_run_at": to_iso(NOW),
        }
        defaults.update(kwargs)
        task = ScheduledTask(id=task_id, **defaults)
        await self.tasks.add_task(task)
        return task


@pytest.fixture
async def env(db_path: Path) -> _Env:
    env = _Env(db_path)
    await env.directory.upsert_team("team-sales", "Sales")
    await env.directory.upsert_account("ana", "ana@acme.test", {"full_name": "Ana Lopez"})
    await env.directory.upsert_user(
        "ana", team_id="team-sales", name="Ana Lopez", email="ana@acme.test"
    )
    return env


# -- Happy paths ---------------------------------------------------------------


async def test_nothing_due(env: _Env) -> None:
    summary = await env.processor().run(now=NOW)
    assert summary["message"] == "No tasks due"
    assert summary["total"] == 0
    assert env.generator.requests == []


async def test_daily_task_advances(env: _Env) -> None:
    await env.add_task("t1")

    summary = await env.processor().run(now=NOW)

    assert summary["processed"] == 1
    assert summary["message"] == "Processed 1 of 1 task(s)"
    assert summary["results"] == [{"taskId": "t1", "title": "Task t1", "status": "success"}]

    task = await env.tasks.get_task("t1")
    assert task.run_count == 1
    assert task.last_run_at == to_iso(NOW)
    assert task.next_run_at == TOMORROW
    assert task.status == "active"
    assert task.claimed_until is None

    [execution] = await env.tasks.list_executions("t1")
    assert execution.status == "success"
    assert execution.result_message == env.generator.reply

    request = env.generator.requests[0]
    assert request.source == "scheduled_task"
    assert request.team_id == "team-sales"
    assert "Address Ana Lopez by name." in request.prompt


async def test_once_task_completes_and_is_not_reselected(env: _Env) -> None:
    await env.add_task("t1", frequency="once")
    processor = env.processor()

    await processor.run(now=NOW)

    task = await env.tasks.get_task("t1")
    assert task.status == "completed"
    assert task.next_run_at is None
    assert task.run_count == 1

    summary = await processor.run(now=NOW + timedelta(minutes=1))
    assert summary["total"] == 0
    assert len(env.generator.requests) == 1


async def test_max_runs_completes_on_last_run(env: _Env) -> None:
    await env.add_task("t1", max_runs=3)
    processor = env.processor()

    now = NOW
    for _ in range(3):
        await processor.run(now=now)
        now += timedelta(days=1)

    task = await env.tasks.get_task("t1")
    assert task.run_count == 3
    assert task.status == "completed"
    assert task.next_run_at is None
    assert len(env.generator.requests) == 3


async def test_window_picks_up_task_due_shortly(env: _Env) -> None:
    await env.add_task("soon", next_run_at=to_iso(NOW + timedelta(seconds=90)))
    await env.add_task("later", next_run_at=to_iso(NOW + timedelta(minutes=10)))

    summary = await env.processor().run(now=NOW)

    assert [r["taskId"] for r in summary["results"]] == ["soon"]


# -- Routing -------------------------------------------------------------------


async def test_conversation_routing(env: _Env) -> None:
    await env.add_task("t1")

    await env.processor().run(now=NOW)

    [message] = await env.messages.list_conversation_messages("ana")
    assert message["message"] == env.generator.reply
    assert message["team_id"] == "team-sales"
    metadata = message["metadata"]
    assert metadata["source"] == "scheduled_task"
    assert metadata["task_id"] == "t1"
    assert metadata["frequency"] == "daily"
    assert metadata["action"] == {"type": "none"}
    assert await env.messages.list_report_messages("ana") == []
    assert await env.messages.list_notifications("ana") == []


async def test_report_task_routes_to_reports_feed(env: _Env) -> None:
    await env.add_task("t1", task_type="report", title="Pipeline Digest")

    await env.processor().run(now=NOW)

    [report] = await env.messages.list_report_messages("ana")
    assert report.message == env.generator.reply
    assert report.user_email == "ana@acme.test"
    assert report.deliver_at is None
    assert report.metadata["task_type"] == "report"
    assert "action" not in report.metadata

    [pointer] = await env.messages.list_conversation_messages("ana")
    assert pointer["message"].startswith('Hi Ana, your scheduled report **"Pipeline Digest"**')
    assert pointer["metadata"]["source"] == "scheduled_task_notification"
    assert pointer["metadata"]["action"] == {"type": "navigate", "destination": "reports"}


@pytest.mark.parametrize("method", ["notification", "both"])
async def test_notification_is_queued_with_preview(env: _Env, method: str) -> None:
    env.generator.reply = "x" * 800
    await env.add_task("t1", delivery_method=method)

    await env.processor().run(now=NOW)

    [notification] = await env.messages.list_notifications("ana")
    assert notification["context"]["task_id"] == "t1"
    assert notification["context"]["task_title"] == "Task t1"
    assert len(notification["context"]["message"]) == 500
    assert notification["scheduled_for"] == to_iso(NOW)


# -- Failures ------------------------------------------------------------------


async def test_generation_error_fails_execution(env: _Env) -> None:
    await env.add_task("t1")
    env.generator.fail_titles.add("Task t1")

    summary = await env.processor().run(now=NOW)

    assert summary["failed"] == 1
    assert summary["results"][0]["error"] == NO_RESPONSE_ERROR
    [execution] = await env.tasks.list_executions("t1")
    assert execution.status == "failed"
    assert execution.error == NO_RESPONSE_ERROR
    assert await env.messages.list_conversation_messages("ana") == []


async def test_blank_reply_fails_execution(env: _Env) -> None:
    await env.add_task("t1")
    env.generator.blank_titles.add("Task t1")

    summary = await env.processor().run(now=NOW)

    assert summary["results"][0]["status"] == "failed"


async def test_missing_generator_fails_every_task(env: _Env) -> None:
    await env.add_task("t1")

    summary = await env.processor(generator=None).run(now=NOW)

    assert summary["failed"] == 1
    assert summary["results"][0]["error"] == NO_RESPONSE_ERROR


async def test_advance_policy_expires_failed_once_task(env: _Env) -> None:
    await env.add_task("t1", frequency="once", run_count=0)
    env.generator.fail_titles.add("Task t1")

    await env.processor().run(now=NOW)

    task = await env.tasks.get_task("t1")
    assert task.status == "expired"
    assert task.next_run_at is None
    assert task.run_count == 0


async def test_advance_policy_moves_recurring_task_on(env: _Env) -> None:
    await env.add_task("t1", run_count=4)
    env.generator.fail_titles.add("Task t1")

    await env.processor().run(now=NOW)

    task = await env.tasks.get_task("t1")
    assert task.status == "active"
    assert task.next_run_at == TOMORROW
    assert task.run_count == 4
    assert task.last_run_at is None


async def test_retry_policy_leaves_task_due(env: _Env) -> None:
    await env.add_task("t1")
    env.generator.fail_titles.add("Task t1")
    processor = env.processor(failure_policy="retry")

    await processor.run(now=NOW)

    task = await env.tasks.get_task("t1")
    assert task.next_run_at == to_iso(NOW)
    assert task.status == "active"
    assert task.claimed_until is None

    env.generator.fail_titles.clear()
    summary = await processor.run(now=NOW + timedelta(minutes=1))
    assert summary["processed"] == 1


async def test_unknown_failure_policy_rejected(env: _Env) -> None:
    with pytest.raises(ValueError, match="Unknown task failure policy"):
        env.processor(failure_policy="ignore")


async def test_one_bad_task_does_not_stop_the_batch(env: _Env) -> None:
    await env.add_task("a", next_run_at=to_iso(NOW - timedelta(minutes=2)))
    await env.add_task("b", next_run_at=to_iso(NOW - timedelta(minutes=1)))
    env.generator.fail_titles.add("Task a")

    summary = await env.processor().run(now=NOW)

    assert [r["status"] for r in summary["results"]] == ["failed", "success"]
    assert summary["processed"] == 1
    assert summary["failed"] == 1


# -- Concurrency and limits ----------------------------------------------------


async def test_batch_cap_defers_the_rest(env: _Env) -> None:
    for index in range(3):
        await env.add_task(f"t{index}", next_run_at=to_iso(NOW - timedelta(minutes=3 - index)))

    summary = await env.processor(batch_size=2).run(now=NOW)

    assert summary["total"] == 3
    assert summary["processed"] == 2
    assert summary["skippedCount"] == 1
    assert (await env.tasks.get_task("t2")).next_run_at == to_iso(NOW - timedelta(minutes=1))


async def test_claimed_task_is_skipped(env: _Env) -> None:
    task = await env.add_task("t1")
    processor = env.processor()
    # Another run selected the task first and claims it before we do.
    assert await env.tasks.claim("t1", NOW, 900) is True

    result = await processor._process_one(task, NOW)

    assert result["status"] == "skipped"
    assert env.generator.requests == []
    assert await env.tasks.list_executions("t1") == []


async def test_stale_executions_are_recovered(env: _Env) -> None:
    task = await env.add_task("t1", next_run_at=to_iso(NOW + timedelta(hours=5)))
    await env.tasks.claim("t1", NOW - timedelta(hours=1), 86400)
    stale = await env.tasks.start_execution(task, to_iso(NOW - timedelta(hours=1)))
    fresh = await env.tasks.start_execution(task, to_iso(NOW - timedelta(minutes=5)))

    summary = await env.processor().run(now=NOW)

    assert summary["recovered"] == 1
    assert (await env.tasks.get_execution(stale.id)).error == STALE_ERROR
    assert (await env.tasks.get_execution(stale.id)).status == "failed"
    assert (await env.tasks.get_execution(fresh.id)).status == "running"
    assert (await env.tasks.get_task("t1")).claimed_until is None


# -- Notification failures -----------------------------------------------------


async def test_notification_failure_keeps_max_runs_completion(env: _Env) -> None:
    await env.add_task("t1", max_runs=1, delivery_method="notification")
    processor = env.processor()

    with patch.object(
        env.messages, "enqueue_notification", AsyncMock(side_effect=RuntimeError("queue down"))
    ):
        summary = await processor.run(now=NOW)

    assert summary["results"][0]["status"] == "success"
    task = await env.tasks.get_task("t1")
    assert task.status == "completed"
    assert task.next_run_at is None
    assert task.run_count == 1
    [execution] = await env.tasks.list_executions("t1")
    assert execution.status == "success"

    again = await processor.run(now=NOW + timedelta(days=1))
    assert again["total"] == 0
    assert len(env.generator.requests) == 1


async def test_notification_failure_keeps_once_task_completed(env: _Env) -> None:
    await env.add_task("t1", frequency="once", delivery_method="both")

    with patch.object(
        env.messages, "enqueue_notification", AsyncMock(side_effect=RuntimeError("queue down"))
    ):
        summary = await env.processor().run(now=NOW)

    assert summary["processed"] == 1
    assert summary["failed"] == 0
    task = await env.tasks.get_task("t1")
    assert task.status == "completed"
    assert task.run_count == 1
    assert len(await env.messages.list_conversation_messages("ana")) == 1
