"""
session_store.py — WizardSessionStore, the single source of truth for the
in-progress ticket submission.

One store instance per app tab. It owns:
  - step-local mutators (each followed by a persistence write)
  - step validity predicates (pure functions of the current state)
  - persistence to a KeyValueStorage under one key with a rolling TTL
  - the finalize round-trip (submit_ticket)

The store does not bounds-check values: validator.py does. set_current_step()
trusts its caller; go_to_step() is the checked variant navigation uses.

Known limitation: two tabs editing the same session race on the storage key
and the last write wins.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from pydantic import ValidationError

from tracker.cache import (
    DEVICE_ID_KEY,
    WIZARD_STORAGE_KEY,
    KeyValueStorage,
    discard,
    read_json,
    write_json,
)
from tracker.config import settings
from tracker.errors import AuthError, SubmissionError
from tracker.wizard.client import WizardApi
from tracker.wizard.schemas import (
    CATEGORY_KEYS,
    STEP_LABELS,
    WIZARD_STEPS,
    BasicInfo,
    ImageRef,
    SessionMetadata,
    TicketSubmission,
    WizardSession,
    WizardStep,
)
from tracker.wizard.validator import parse_ticket_date, validate_submission

logger = logging.getLogger(__name__)

_BASIC_INFO_FIELDS = ("date", "truck_id", "jobsite_id", "notes")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StepTransition:
    """Outcome of go_to_step(). step is where the wizard is after the call."""

    accepted: bool
    step: WizardStep
    reason: Optional[str] = None


class WizardSessionStore:
    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        ttl: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
        storage_key: str = WIZARD_STORAGE_KEY,
    ):
        self.storage = storage
        self.ttl = ttl if ttl is not None else settings.wizard_session_ttl
        self.storage_key = storage_key
        self._clock = clock
        self._device_id: Optional[str] = None
        self.user_id: Optional[str] = None
        self.session = WizardSession()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def current_step(self) -> WizardStep:
        return self.session.current_step

    @property
    def basic_info(self) -> Optional[BasicInfo]:
        return self.session.basic_info

    @property
    def categories(self) -> Optional[Dict[str, int]]:
        return self.session.categories

    @property
    def image_upload(self) -> list[ImageRef]:
        return self.session.image_upload

    @property
    def last_updated(self) -> Optional[datetime]:
        return self.session.last_updated

    @property
    def is_submitting(self) -> bool:
        return self.session.is_submitting

    @property
    def session_id(self) -> Optional[str]:
        return self.session.metadata.session_id if self.session.metadata else None

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().astimezone().date()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> bool:
        """
        Hydrate the in-memory session from storage.

        Returns False when nothing usable is stored. Corrupt or expired records
        are removed and read as "no session"; nothing is raised.
        """
        data = await read_json(self.storage, self.storage_key)
        if data is None:
            return False
        try:
            stored = WizardSession.model_validate(data)
        except ValidationError:
            logger.warning("Dropping unreadable wizard session key=%s", self.storage_key)
            await discard(self.storage, self.storage_key)
            return False

        if stored.metadata is not None and stored.metadata.expires_at <= self._clock():
            logger.info("Wizard session expired session_id=%s", stored.metadata.session_id)
            await discard(self.storage, self.storage_key)
            return False

        self.session = stored
        return True

    async def init_session(self) -> SessionMetadata:
        """Create session id + metadata if none exist; otherwise leave the session as is."""
        if self.session.metadata is None:
            await self._persist()
            logger.info("Wizard session started session_id=%s", self.session_id)
        return self.session.metadata

    def bind_user(self, user_id: Optional[str]) -> None:
        self.user_id = user_id
        if self.session.metadata is not None and user_id:
            self.session.metadata.user_id = user_id

    def has_active_session(self) -> bool:
        metadata = self.session.metadata
        if metadata is None:
            return False
        return self._clock() < metadata.expires_at

    def is_session_expired(self) -> bool:
        metadata = self.session.metadata
        if metadata is None:
            return True
        return self._clock() > metadata.expires_at

    async def clear_wizard(self) -> None:
        """Reset to an empty session and remove the persisted copy."""
        session_id = self.session_id
        self.session = WizardSession()
        await discard(self.storage, self.storage_key)
        logger.info("Wizard cleared session_id=%s", session_id)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def set_current_step(self, step: WizardStep) -> None:
        """Unconditional. Callers check can_proceed_to_next_step() first."""
        self.session.current_step = WizardStep(step)
        await self._persist()

    async def go_to_step(self, step: WizardStep) -> StepTransition:
        """
        Checked transition. Backward moves are always accepted; a forward move
        is rejected unless every step before the target is valid.
        """
        step = WizardStep(step)
        target = WIZARD_STEPS.index(step)
        if target > WIZARD_STEPS.index(self.session.current_step):
            for earlier in WIZARD_STEPS[:target]:
                if not self.is_step_valid(earlier):
                    return StepTransition(
                        accepted=False,
                        step=self.session.current_step,
                        reason=f"Complete {STEP_LABELS[earlier]} before continuing",
                    )
        await self.set_current_step(step)
        return StepTransition(accepted=True, step=step)

    # ------------------------------------------------------------------
    # Mutators: pure field replacement, then persist
    # ------------------------------------------------------------------

    async def update_basic_info(self, field: str, value: Optional[str]) -> None:
        if field not in _BASIC_INFO_FIELDS:
            raise ValueError(f"Unknown basic info field '{field}'")
        if field == "notes":
            value = value or ""
        current = self.session.basic_info or BasicInfo()
        self.session.basic_info = current.model_copy(update={field: value})
        await self._persist()

    async def set_basic_info(self, info: Optional[BasicInfo]) -> None:
        self.session.basic_info = info
        await self._persist()

    async def update_category(self, category_id: str, value: int) -> None:
        if category_id not in CATEGORY_KEYS:
            raise ValueError(f"Unknown category '{category_id}'")
        categories = dict(self.session.categories or {})
        categories[category_id] = value
        self.session.categories = categories
        await self._persist()

    async def set_categories(self, categories: Optional[Dict[str, int]]) -> None:
        self.session.categories = dict(categories) if categories is not None else None
        await self._persist()

    async def set_image_upload(self, images: Iterable[ImageRef]) -> None:
        self.session.image_upload = list(images)
        await self._persist()

    # ------------------------------------------------------------------
    # Validity predicates (no side effects)
    # ------------------------------------------------------------------

    def is_step_valid(self, step: WizardStep) -> bool:
        step = WizardStep(step)
        if step == WizardStep.basic_info:
            info = self.session.basic_info
            if info is None or not (info.date and info.truck_id and info.jobsite_id):
                return False
            parsed = parse_ticket_date(info.date)
            return parsed is not None and parsed <= self.today()
        if step == WizardStep.categories:
            categories = self.session.categories
            # zero is a real count; only absence fails
            return categories is not None and all(key in categories for key in CATEGORY_KEYS)
        if step == WizardStep.image_upload:
            return True
        return self.is_step_valid(WizardStep.basic_info) and self.is_step_valid(WizardStep.categories)

    def can_proceed_to_next_step(self) -> bool:
        return self.is_step_valid(self.session.current_step)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def build_submission(self) -> TicketSubmission:
        return TicketSubmission(
            basic_info=self.session.basic_info or BasicInfo(),
            categories=dict(self.session.categories or {}),
            images=list(self.session.image_upload),
            session_id=self.session_id,
            user_id=self.user_id,
        )

    async def submit_ticket(self, api: WizardApi) -> str:
        """
        Send the aggregated payload to the finalize endpoint.

        Success clears the wizard and returns the created ticket id. Failure
        raises SubmissionError, or the AuthError that blocked the call, and
        leaves every field as it was so the user can retry. Validation
        problems raise WizardValidationError before any network call.
        """
        if self.session.is_submitting:
            raise SubmissionError("A submission is already in progress.")

        submission = self.build_submission()
        validate_submission(submission, self.today())

        self.session.is_submitting = True
        try:
            ticket_id = await api.finalize(submission)
        except SubmissionError:
            logger.warning("Ticket submission rejected session_id=%s", self.session_id)
            raise
        except AuthError as exc:
            # keeps its own message, e.g. "session expired"
            logger.warning(
                "Ticket submission not authorised session_id=%s: %s", self.session_id, type(exc).__name__
            )
            raise
        except Exception as exc:
            logger.warning(
                "Ticket submission failed session_id=%s: %s", self.session_id, type(exc).__name__
            )
            raise SubmissionError() from exc
        finally:
            self.session.is_submitting = False

        logger.info("Ticket submitted ticket_id=%s session_id=%s", ticket_id, self.session_id)
        await self.clear_wizard()
        return ticket_id

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _get_device_id(self) -> str:
        if self._device_id is None:
            stored = await read_json(self.storage, DEVICE_ID_KEY)
            if isinstance(stored, str) and stored:
                self._device_id = stored
            else:
                self._device_id = f"device_{uuid.uuid4().hex}"
                await write_json(self.storage, DEVICE_ID_KEY, self._device_id)
        return self._device_id

    async def _persist(self) -> None:
        """Stamp last_updated, re-arm the 24h expiry and write the session."""
        now = self._clock()
        self.session.last_updated = now
        metadata = self.session.metadata
        if metadata is None:
            metadata = SessionMetadata(
                session_id=uuid.uuid4().hex,
                created_at=now,
                expires_at=now,
                device_id=await self._get_device_id(),
                user_id=self.user_id,
            )
            self.session.metadata = metadata
        metadata.expires_at = now + timedelta(seconds=self.ttl)
        await write_json(self.storage, self.storage_key, self.session.to_storage(), self.ttl)

    def snapshot(self) -> Dict[str, Any]:
        """Persistable form of the current session (what load() would restore)."""
        return self.session.to_storage()
