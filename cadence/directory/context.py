"""ContextLoader — resolves identity, team and assistant context for prompts.

Lookups degrade instead of failing: the normalized ``users`` table is
preferred, account metadata is the fallback, and optional context
(priorities, skills) becomes an empty list when unavailable.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cadence.directory.store import DirectoryStore

logger = logging.getLogger(__name__)

DEFAULT_TEAM_NAME = "Your Team"
DEFAULT_AGENT_NAME = "Astra"
DEFAULT_USER_NAME = "there"


@dataclass(frozen=True)
class Recipient:
    """One addressee of a delivered message."""

    user_id: str
    email: str
    name: str


@dataclass
class OwnerContext:
    """The owner of a report definition, as seen by the report scheduler."""

    user_id: str
    email: str
    name: str
    team_id: str | None = None
    team_name: str = ""
    role: str = "member"
    view_financial: bool = True

    def as_recipient(self) -> Recipient:
        return Recipient(user_id=self.user_id, email=self.email, name=self.name)


@dataclass
class TaskContext:
    """Everything a scheduled-task prompt needs to address the user."""

    user_name: str
    user_email: str
    team_id: str
    team_name: str = DEFAULT_TEAM_NAME
    agent_name: str = DEFAULT_AGENT_NAME
    priorities: list[str] = field(default_factory=list)
    user_priorities: list[str] = field(default_factory=list)
    active_skills: list[str] = field(default_factory=list)

    @property
    def first_name(self) -> str:
        parts = self.user_name.split()
        return parts[0] if parts else self.user_name


def priority_list(raw: Any) -> list[str]:
    """Normalize stored priorities (a JSON list or an object of values)."""
    if isinstance(raw, list):
        return [str(p) for p in raw if p]
    if isinstance(raw, dict):
        return [str(p) for p in raw.values() if p]
    return []


class ContextLoader:
    """Read-only resolver over a DirectoryStore."""

    def __init__(self, directory: DirectoryStore) -> None:
        self._directory = directory

    async def load_report_owner(self, user_id: str) -> OwnerContext | None:
        """Resolve a report owner, or None when the account has no email."""
        account = await self._directory.get_account(user_id)
        if account is None or not account.get("email"):
            logger.error("Account not found (or missing email) for user %s", user_id)
            return None

        metadata = account["metadata"]
        email = account["email"]
        owner = OwnerContext(
            user_id=user_id,
            email=email,
            name=metadata.get("full_name") or email,
        )

        try:
            record = await self._directory.get_user(user_id)
        except Exception:
            logger.warning(
                "User record lookup failed for %s, falling back to account metadata",
                user_id,
                exc_info=True,
            )
            record = None

        if record is None:
            owner.team_id = metadata.get("team_id")
            owner.role = metadata.get("role") or "member"
            owner.view_financial = metadata.get("view_financial") is not False
            return owner

        owner.team_id = record["team_id"]
        owner.team_name = record["team_name"] or ""
        owner.role = record["role"] or "member"
        owner.view_financial = record["view_financial"]
        owner.name = record["name"] or owner.name
        logger.debug(
            "Owner context: team=%s (%s) role=%s name=%s",
            owner.team_name,
            owner.team_id,
            owner.role,
            owner.name,
        )
        return owner

    async def load_task_context(self, user_id: str, team_id: str) -> TaskContext:
        """Gather user/team/assistant context; never raises."""
        labels = ("user", "account", "team", "agent", "priorities", "user_priorities", "skills")
        results = await asyncio.gather(
            self._directory.get_user(user_id),
            self._directory.get_account(user_id),
            self._directory.get_team_name(team_id),
            self._directory.get_agent_name(team_id),
            self._directory.get_team_priorities(team_id),
            self._directory.get_user_priorities(user_id),
            self._directory.list_active_skills(user_id),
            return_exceptions=True,
        )
        values: dict[str, Any] = {}
        for label, result in zip(labels, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "Context lookup '%s' failed for user %s: %s", label, user_id, result
                )
                result = None
            values[label] = result

        user = values["user"] or {}
        account = values["account"] or {}
        email = user.get("email") or account.get("email") or ""
        name = (
            user.get("name")
            or account.get("metadata", {}).get("full_name")
            or (email.split("@")[0] if email else "")
            or DEFAULT_USER_NAME
        )
        return TaskContext(
            user_name=name,
            user_email=email,
            team_id=team_id,
            team_name=values["team"] or DEFAULT_TEAM_NAME,
            agent_name=values["agent"] or DEFAULT_AGENT_NAME,
            priorities=priority_list(values["priorities"]),
            user_priorities=priority_list(values["user_priorities"]),
            active_skills=list(values["skills"] or []),
        )

    async def resolve_recipients(
        self, owner: OwnerContext, *, team_wide: bool
    ) -> list[Recipient]:
        """Team roster for team-wide items, otherwise the owner alone.

        Falls back to the owner when the roster can't be loaded or is empty.
        """
        if not team_wide or not owner.team_id:
            return [owner.as_recipient()]

        try:
            members = await self._directory.list_team_members(owner.team_id)
        except Exception:
            logger.exception("Failed to load roster for team %s", owner.team_id)
            return [owner.as_recipient()]

        recipients = [
            Recipient(user_id=m["id"], email=m["email"], name=m["name"] or m["email"])
            for m in members
            if m.get("email")
        ]
        if not recipients:
            logger.warning("Team %s has no addressable members, using owner", owner.team_id)
            return [owner.as_recipient()]
        logger.info("Resolved %d recipient(s) for team %s", len(recipients), owner.team_id)
        return recipients

    async def describe_recipient(self, user_id: str, email: str) -> Recipient:
        """Display name for a single addressee (account name, else email)."""
        try:
            account = await self._directory.get_account(user_id)
        except Exception:
            logger.warning("Account lookup failed for %s", user_id, exc_info=True)
            account = None
        metadata = (account or {}).get("metadata", {})
        return Recipient(user_id=user_id, email=email, name=metadata.get("full_name") or email)
