"""
recovery.py — SessionRecoveryCoordinator.

On mount: wait a short settle delay, hydrate the store, and if an unexpired
session is stored, build a RecoveryPrompt describing it. The prompt is offered
at most once per coordinator instance; resume() or discard() dismisses it for
the rest of the instance's lifetime.

Existence + non-expiry is the whole test: a stored session with no data in any
field still produces a prompt ("with minimal progress").
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from tracker.config import settings
from tracker.wizard.schemas import CATEGORY_KEYS, STEP_LABELS, WizardSession, WizardStep
from tracker.wizard.session_store import WizardSessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecoveryPrompt:
    step: WizardStep
    step_label: str
    has_basic_info: bool
    has_categories: bool
    image_count: int
    last_updated: Optional[datetime]
    relative_time: str
    absolute_time: str

    @property
    def progress_summary(self) -> str:
        parts = []
        if self.has_basic_info:
            parts.append("basic information")
        if self.has_categories:
            parts.append("category counts")
        if self.image_count > 0:
            parts.append(f"{self.image_count} image{'s' if self.image_count != 1 else ''}")

        if not parts:
            return "with minimal progress"
        if len(parts) == 1:
            return f"with {parts[0]}"
        if len(parts) == 2:
            return f"with {parts[0]} and {parts[1]}"
        return f"with {', '.join(parts[:-1])}, and {parts[-1]}"


def format_relative(moment: datetime, now: datetime) -> str:
    """'just now', '5 minutes ago', 'about 3 hours ago', '2 days ago'."""
    seconds = (now - moment).total_seconds()
    if seconds < 45:
        return "just now"
    minutes = round(seconds / 60)
    if minutes < 45:
        return f"{max(minutes, 1)} minute{'s' if minutes > 1 else ''} ago"
    hours = round(seconds / 3600)
    if hours < 24:
        return f"about {max(hours, 1)} hour{'s' if hours > 1 else ''} ago"
    days = round(seconds / 86400)
    return f"{days} day{'s' if days != 1 else ''} ago"


def format_absolute(moment: datetime) -> str:
    return moment.astimezone().strftime("%b %d, %Y, %I:%M %p")


def _summarize(session: WizardSession, now: datetime) -> RecoveryPrompt:
    info = session.basic_info
    categories = session.categories or {}
    last_updated = session.last_updated
    return RecoveryPrompt(
        step=session.current_step,
        step_label=STEP_LABELS.get(session.current_step, "Unknown Step"),
        has_basic_info=bool(info and info.date and info.truck_id and info.jobsite_id),
        # same rule as the categories step predicate: all six set, zeros included
        has_categories=bool(session.categories is not None and all(k in categories for k in CATEGORY_KEYS)),
        image_count=len(session.image_upload),
        last_updated=last_updated,
        relative_time=format_relative(last_updated, now) if last_updated else "",
        absolute_time=format_absolute(last_updated) if last_updated else "",
    )


class SessionRecoveryCoordinator:
    def __init__(self, store: WizardSessionStore, settle_delay: Optional[float] = None):
        self.store = store
        self.settle_delay = (
            settings.wizard_recovery_settle_delay if settle_delay is None else settle_delay
        )
        self.prompt: Optional[RecoveryPrompt] = None
        self._checked = False
        self._dismissed = False

    @property
    def is_visible(self) -> bool:
        return self.prompt is not None and not self._dismissed

    async def check(self) -> Optional[RecoveryPrompt]:
        """
        Look for an abandoned session. Returns the prompt to show, or None.
        Only the first call per instance can produce a prompt.
        """
        if self._checked:
            return self.prompt if self.is_visible else None
        self._checked = True

        await asyncio.sleep(self.settle_delay)
        await self.store.load()
        if not self.store.has_active_session():
            return None

        self.prompt = _summarize(self.store.session, self.store.now())
        logger.info(
            "Recoverable wizard session found session_id=%s step=%s",
            self.store.session_id,
            self.prompt.step.value,
        )
        return self.prompt

    async def resume(self) -> WizardSession:
        """Keep the stored session exactly as it is and continue from its step."""
        self._dismissed = True
        await self.store.init_session()
        logger.info("Wizard session resumed session_id=%s", self.store.session_id)
        return self.store.session

    async def discard(self) -> None:
        """Drop the stored session and start empty."""
        self._dismissed = True
        await self.store.clear_wizard()
