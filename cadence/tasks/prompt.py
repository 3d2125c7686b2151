"""Prompt construction for scheduled task runs."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from cadence.recurrence import to_iso

if TYPE_CHECKING:
    from cadence.directory.context import TaskContext
    from cadence.tasks.models import ScheduledTask

_RULES = """IMPORTANT RULES:
- Use ONLY the team's actual synced document data to inform your response. \
Do NOT fabricate numbers, metrics, or statistics.
- If no relevant data is found, clearly state that and suggest what data the user should sync.
- Address {user_name} by name.
- Be concise but thorough. Use markdown formatting with bold headers and bullet points.
- Do not mention that you are an AI or that this is automated."""


def _section(label: str, items: list[str]) -> str:
    return f"\n{label}: {', '.join(items)}" if items else ""


def build_task_prompt(task: ScheduledTask, ctx: TaskContext, now: datetime) -> str:
    """Build the instruction sent to the Generation Service for one run."""
    description = f"Description: {task.description}" if task.description else ""
    context_lines = (
        _section("Team priorities", ctx.priorities)
        + _section("Personal priorities", ctx.user_priorities)
        + _section("Active skills", ctx.active_skills)
    )
    cadence = "" if task.is_one_time else f" (runs {task.frequency})"

    return (
        f"You are {ctx.agent_name}, the AI assistant for the {ctx.team_name} team.\n"
        f"You are executing a scheduled {task.task_type} for {ctx.user_name}.\n"
        "\n"
        f'Task: "{task.title}"\n'
        f"{description}\n"
        f"{context_lines}\n"
        "\n"
        "The user set up this task with the following instructions:\n"
        f"{task.ai_prompt}\n"
        "\n"
        f"This is execution #{task.run_count + 1}{cadence}.\n"
        f"Current date: {to_iso(now)}.\n"
        "\n"
        + _RULES.format(user_name=ctx.user_name)
    )
