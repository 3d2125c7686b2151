"""TaskProcessor — the polling dispatcher for user-scheduled assistant tasks.

Each invocation first fails executions abandoned by a crashed run, then
selects active tasks due within the look-ahead window and runs them one by
one: claim, open an execution row, load context, build the prompt, call
the Generation Service, route the result to the right feed, close the
execution and advance the schedule.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from cadence.config import settings
from cadence.generation.service import (
    SOURCE_SCHEDULED_TASK,
    GenerationError,
    GenerationRequest,
)
from cadence.recurrence import next_task_run, to_iso
from cadence.tasks.models import (
    EXECUTION_FAILED,
    EXECUTION_SUCCESS,
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STATUS_EXPIRED,
)
from cadence.tasks.prompt import build_task_prompt

if TYPE_CHECKING:
    from cadence.delivery.store import MessageStore
    from cadence.directory.context import ContextLoader, TaskContext
    from cadence.generation.service import GenerationService
    from cadence.tasks.models import ScheduledTask, TaskExecution
    from cadence.tasks.store import TaskStore

logger = logging.getLogger(__name__)

POLICY_ADVANCE = "advance"
POLICY_RETRY = "retry"
FAILURE_POLICIES = (POLICY_ADVANCE, POLICY_RETRY)

NO_RESPONSE_ERROR = (
    "No response from team agent. The task requires synced document data "
    "but could not reach the data retrieval service."
)
STALE_ERROR = "Execution abandoned (stale)"
NOTIFICATION_PREVIEW_CHARS = 500


class TaskProcessor:
    """Runs due scheduled tasks and keeps their execution audit trail.

    Args:
        store: TaskStore with tasks and executions.
        messages: MessageStore for the conversation and reports feeds.
        loader: ContextLoader for the prompt's user/team context.
        generator: GenerationService, or None when none is configured (every
            run then fails with the no-response error).
        batch_size: Max tasks per invocation.
        window_seconds: Look-ahead so tasks due just after the tick still run.
        lease_seconds: How long a claim on a task lasts.
        stale_seconds: Age after which a ``running`` execution is abandoned.
        failure_policy: ``"advance"`` (a failed run consumes its slot) or
            ``"retry"`` (the slot stays due for the next tick).
        default_timezone: Zone used when a task's own zone is unknown.
    """

    def __init__(
        self,
        store: TaskStore,
        messages: MessageStore,
        loader: ContextLoader,
        generator: GenerationService | None,
        *,
        batch_size: int | None = None,
        window_seconds: int | None = None,
        lease_seconds: int | None = None,
        stale_seconds: int | None = None,
        failure_policy: str | None = None,
        default_timezone: str | None = None,
    ) -> None:
        self._store = store
        self._messages = messages
        self._loader = loader
        self._generator = generator
        self._batch_size = batch_size or settings.task_batch_size
        self._window_seconds = (
            settings.task_window_seconds if window_seconds is None else window_seconds
        )
        self._lease_seconds = lease_seconds or settings.claim_lease_seconds
        self._stale_seconds = stale_seconds or settings.stale_execution_seconds
        self._failure_policy = failure_policy or settings.task_failure_policy
        if self._failure_policy not in FAILURE_POLICIES:
            msg = f"Unknown task failure policy: {self._failure_policy!r}"
            raise ValueError(msg)
        self._default_timezone = default_timezone or settings.default_task_timezone

    # -- Entry point -----------------------------------------------------------

    async def run(self, *, now: datetime | None = None) -> dict[str, Any]:
        """Process every task due within the window (up to the batch cap)."""
        now = now or datetime.now(UTC)
        recovered = await self.recover_stale(now)

        cutoff = now + timedelta(seconds=self._window_seconds)
        due = await self._store.list_due(to_iso(cutoff), to_iso(now))
        if not due:
            logger.info("No scheduled tasks due")
            return self._summary([], total=0, now=now, recovered=recovered)

        batch = due[: self._batch_size]
        logger.info("Processing %d of %d due task(s)", len(batch), len(due))

        results = []
        for task in batch:
            try:
                result = await self._process_one(task, now)
            except Exception as exc:
                logger.exception("Task %s failed", task.id)
                result = self._result(task, "failed", error=str(exc))
            results.append(result)

        return self._summary(results, total=len(due), now=now, recovered=recovered)

    async def recover_stale(self, now: datetime) -> int:
        """Fail executions left ``running`` by a crashed run; release their tasks."""
        started_before = to_iso(now - timedelta(seconds=self._stale_seconds))
        stale = await self._store.list_stale_executions(started_before)
        recovered = 0
        for execution in stale:
            closed = await self._store.finish_execution(
                execution.id,
                EXECUTION_FAILED,
                completed_at=to_iso(now),
                error=STALE_ERROR,
            )
            if closed:
                await self._store.release(execution.task_id)
                recovered += 1
        if recovered:
            logger.warning("Recovered %d stale task execution(s)", recovered)
        return recovered

    # -- Per-task pipeline -----------------------------------------------------

    async def _process_one(self, task: ScheduledTask, now: datetime) -> dict[str, Any]:
        if not await self._store.claim(task.id, now, self._lease_seconds):
            logger.info("Task %s is claimed by another run, skipping", task.id)
            return self._result(task, "skipped")
        try:
            return await self._execute(task, now)
        finally:
            await self._store.release(task.id)

    async def _execute(self, task: ScheduledTask, now: datetime) -> dict[str, Any]:
        execution = await self._store.start_execution(task, to_iso(now))
        try:
            ctx = await self._loader.load_task_context(task.user_id, task.team_id)
            result_message = await self._generate(task, build_task_prompt(task, ctx, now))

            if not result_message.strip():
                logger.warning("Task %s: generation unavailable or empty, skipping", task.id)
                await self._fail(task, execution, NO_RESPONSE_ERROR, now)
                return self._result(task, "failed", error=NO_RESPONSE_ERROR)

            await self._route(task, ctx, execution, result_message)
            await self._store.finish_execution(
                execution.id,
                EXECUTION_SUCCESS,
                completed_at=to_iso(datetime.now(UTC)),
                result_message=result_message,
            )
        except Exception as exc:
            logger.exception("Task %s failed", task.id)
            await self._fail(task, execution, str(exc), now)
            return self._result(task, "failed", error=str(exc))

        # The run has been delivered; it counts even if the notification fails.
        await self._advance(task, now)
        if task.wants_notification:
            await self._notify(task, result_message, now)

        logger.info("Task %s (%s) executed successfully", task.id, task.title)
        return self._result(task, "success")

    async def _notify(self, task: ScheduledTask, result_message: str, now: datetime) -> None:
        try:
            await self._messages.enqueue_notification(
                user_id=task.user_id,
                context={
                    "task_id": task.id,
                    "task_title": task.title,
                    "message": result_message[:NOTIFICATION_PREVIEW_CHARS],
                },
                scheduled_for=to_iso(now),
            )
        except Exception:
            logger.exception("Failed to queue notification for task %s", task.id)

    async def _generate(self, task: ScheduledTask, prompt: str) -> str:
        if self._generator is None:
            logger.warning("No generation service configured; task %s cannot run", task.id)
            return ""
        request = GenerationRequest(
            prompt=prompt,
            user_id=task.user_id,
            team_id=task.team_id,
            source=SOURCE_SCHEDULED_TASK,
        )
        try:
            return await self._generator.generate(request)
        except GenerationError as exc:
            logger.error("Error calling team agent for task %s: %s", task.id, exc)
            return ""

    async def _route(
        self,
        task: ScheduledTask,
        ctx: TaskContext,
        execution: TaskExecution,
        result_message: str,
    ) -> None:
        """Report tasks go to the reports feed with a pointer in the conversation."""
        metadata = {
            "source": SOURCE_SCHEDULED_TASK,
            "task_id": task.id,
            "task_title": task.title,
            "task_type": task.task_type,
            "execution_id": execution.id,
            "frequency": task.frequency,
        }
        if not task.is_report:
            await self._messages.insert_conversation_message(
                user_id=task.user_id,
                team_id=task.team_id,
                message=result_message,
                metadata={**metadata, "action": {"type": "none"}},
            )
            return

        await self._messages.insert_report_message(
            user_id=task.user_id,
            user_email=ctx.user_email,
            message=result_message,
            metadata=metadata,
        )
        await self._messages.insert_conversation_message(
            user_id=task.user_id,
            team_id=task.team_id,
            message=(
                f'Hi {ctx.first_name}, your scheduled report **"{task.title}"** just '
                "finished running. You can view the full results in your **Reports** tab."
            ),
            metadata={
                "source": "scheduled_task_notification",
                "task_id": task.id,
                "task_title": task.title,
                "action": {"type": "navigate", "destination": "reports"},
            },
        )

    # -- Schedule bookkeeping --------------------------------------------------

    async def _advance(self, task: ScheduledTask, now: datetime) -> None:
        run_count = task.run_count + 1
        maxed = task.max_runs is not None and run_count >= task.max_runs
        finished = maxed or task.is_one_time
        next_run_at = None if finished else self._next_run(task, now)
        await self._store.record_run(
            task.id,
            run_count=run_count,
            last_run_at=to_iso(now),
            next_run_at=next_run_at,
            status=STATUS_COMPLETED if finished else STATUS_ACTIVE,
        )
        if finished:
            logger.info("Task %s completed after %d run(s)", task.id, run_count)

    async def _fail(
        self, task: ScheduledTask, execution: TaskExecution, error: str, now: datetime
    ) -> None:
        await self._store.finish_execution(
            execution.id,
            EXECUTION_FAILED,
            completed_at=to_iso(datetime.now(UTC)),
            error=error,
        )
        if self._failure_policy == POLICY_RETRY:
            logger.info("Task %s left due for retry", task.id)
            return
        if task.is_one_time:
            await self._store.reschedule(task.id, None, STATUS_EXPIRED)
            logger.info("One-time task %s expired after a failed run", task.id)
        else:
            await self._store.reschedule(task.id, self._next_run(task, now), task.status)

    def _next_run(self, task: ScheduledTask, now: datetime) -> str | None:
        next_run = next_task_run(
            task.frequency,
            task.schedule_hour,
            task.schedule_minute,
            task.schedule_day,
            task.timezone,
            now,
            default_timezone=self._default_timezone,
        )
        return to_iso(next_run) if next_run else None

    # -- Results ---------------------------------------------------------------

    @staticmethod
    def _result(task: ScheduledTask, status: str, *, error: str | None = None) -> dict[str, Any]:
        result: dict[str, Any] = {"taskId": task.id, "title": task.title, "status": status}
        if error is not None:
            result["error"] = error
        return result

    def _summary(
        self,
        results: list[dict[str, Any]],
        *,
        total: int,
        now: datetime,
        recovered: int,
    ) -> dict[str, Any]:
        processed = sum(1 for r in results if r["status"] == "success")
        failed = sum(1 for r in results if r["status"] == "failed")
        claimed_elsewhere = sum(1 for r in results if r["status"] == "skipped")
        skipped = max(total - len(results), 0) + claimed_elsewhere
        logger.info(
            "Task summary: %d succeeded, %d failed, %d deferred", processed, failed, skipped
        )
        return {
            "success": True,
            "message": f"Processed {processed} of {total} task(s)" if total else "No tasks due",
            "processed": processed,
            "failed": failed,
            "skippedCount": skipped,
            "total": total,
            "recovered": recovered,
            "results": results,
            "checkedAt": to_iso(now),
        }
