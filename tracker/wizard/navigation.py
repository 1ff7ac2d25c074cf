"""
navigation.py — Next / Back / Submit controls for the ticket wizard.

next() is the only forward path:
  1. can_proceed_to_next_step()  (store predicate)
  2. validate_step()             (client-local rules; nothing is sent on failure)
  3. save_step()                 (one remote checkpoint; failure blocks navigation)
  4. go_to_step()                (store's checked transition)

An asyncio.Lock serialises step saves so step N+1's save never starts before
step N's has completed.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from tracker.errors import AuthError, StepSaveError, SubmissionError, WizardValidationError
from tracker.wizard.client import WizardApi
from tracker.wizard.schemas import STEP_ENDPOINTS, STEP_LABELS, WIZARD_STEPS, WizardStep
from tracker.wizard.session_store import WizardSessionStore
from tracker.wizard.validator import validate_step

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NavigationResult:
    moved: bool
    step: WizardStep
    error: Optional[str] = None
    ticket_id: Optional[str] = None


class WizardNavigation:
    def __init__(self, store: WizardSessionStore, api: WizardApi):
        self.store = store
        self.api = api
        self._lock = asyncio.Lock()

    # -- progress ------------------------------------------------------

    @property
    def step_number(self) -> int:
        return WIZARD_STEPS.index(self.store.current_step) + 1

    @property
    def total_steps(self) -> int:
        return len(WIZARD_STEPS)

    @property
    def progress_percent(self) -> int:
        return round((self.step_number - 1) / (self.total_steps - 1) * 100)

    @property
    def step_label(self) -> str:
        return STEP_LABELS[self.store.current_step]

    @property
    def is_first_step(self) -> bool:
        return self.store.current_step == WIZARD_STEPS[0]

    @property
    def is_last_step(self) -> bool:
        return self.store.current_step == WIZARD_STEPS[-1]

    # -- controls ------------------------------------------------------

    def _step_payload(self, step: WizardStep) -> dict:
        session = self.store.session
        if step == WizardStep.basic_info:
            return session.basic_info.model_dump(mode="json") if session.basic_info else {}
        if step == WizardStep.categories:
            return dict(session.categories or {})
        return {"images": [image.model_dump(mode="json") for image in session.image_upload]}

    async def next(self) -> NavigationResult:
        async with self._lock:
            step = self.store.current_step
            if self.is_last_step:
                return NavigationResult(moved=False, step=step, error="Use submit on the confirmation step")

            if not self.store.can_proceed_to_next_step():
                return NavigationResult(
                    moved=False,
                    step=step,
                    error=f"Complete {STEP_LABELS[step]} before continuing",
                )

            try:
                validate_step(step, self.store.session, self.store.today())
            except WizardValidationError as exc:
                return NavigationResult(moved=False, step=step, error=exc.user_message)

            if step in STEP_ENDPOINTS:
                try:
                    await self.api.save_step(step, self._step_payload(step), session_id=self.store.session_id)
                except (StepSaveError, AuthError) as exc:
                    return NavigationResult(moved=False, step=step, error=exc.user_message)

            target = WIZARD_STEPS[WIZARD_STEPS.index(step) + 1]
            transition = await self.store.go_to_step(target)
            if not transition.accepted:
                return NavigationResult(moved=False, step=transition.step, error=transition.reason)
            logger.info("Wizard advanced to step=%s session_id=%s", target.value, self.store.session_id)
            return NavigationResult(moved=True, step=transition.step)

    async def back(self) -> NavigationResult:
        async with self._lock:
            step = self.store.current_step
            if self.is_first_step:
                return NavigationResult(moved=False, step=step)
            transition = await self.store.go_to_step(WIZARD_STEPS[WIZARD_STEPS.index(step) - 1])
            return NavigationResult(moved=True, step=transition.step)

    async def submit(self) -> NavigationResult:
        async with self._lock:
            step = self.store.current_step
            if step != WizardStep.confirmation:
                return NavigationResult(moved=False, step=step, error="Review your ticket before submitting")
            try:
                ticket_id = await self.store.submit_ticket(self.api)
            except (WizardValidationError, SubmissionError, AuthError) as exc:
                return NavigationResult(moved=False, step=step, error=exc.user_message)
            return NavigationResult(moved=True, step=self.store.current_step, ticket_id=ticket_id)
