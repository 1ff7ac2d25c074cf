"""
SessionRecoveryCoordinator tests — detection of an abandoned wizard session
and the resume / discard choice.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tracker.cache import WIZARD_STORAGE_KEY
from tracker.tests.fakes import fill_valid_session
from tracker.wizard.navigation import WizardNavigation
from tracker.wizard.recovery import RecoveryPrompt, SessionRecoveryCoordinator, format_relative
from tracker.wizard.schemas import CATEGORY_KEYS, ImageRef, WizardStep
from tracker.wizard.session_store import WizardSessionStore


def _reopen(storage, clock) -> SessionRecoveryCoordinator:
    return SessionRecoveryCoordinator(WizardSessionStore(storage, clock=clock), settle_delay=0)


@pytest.mark.asyncio
async def test_zero_counts_on_categories_step_are_offered_for_recovery(storage, clock, api) -> None:
    store = WizardSessionStore(storage, clock=clock)
    await store.set_categories({key: 0 for key in CATEGORY_KEYS})
    await store.set_current_step(WizardStep.categories)
    assert store.is_step_valid(WizardStep.categories) is True

    # basic info was never filled in, so the move to Image Upload is refused
    result = await WizardNavigation(store, api).next()
    assert result.moved is False

    clock.advance(hours=3)
    prompt = await _reopen(storage, clock).check()

    assert prompt is not None
    assert prompt.step_label == "Categories"
    assert prompt.progress_summary == "with category counts"
    assert prompt.relative_time == "about 3 hours ago"


@pytest.mark.asyncio
async def test_no_prompt_without_stored_session(storage, clock) -> None:
    coordinator = _reopen(storage, clock)
    assert await coordinator.check() is None
    assert coordinator.is_visible is False


@pytest.mark.asyncio
async def test_no_prompt_after_expiry(storage, clock) -> None:
    await fill_valid_session(WizardSessionStore(storage, clock=clock))
    clock.advance(hours=25)
    assert await _reopen(storage, clock).check() is None


@pytest.mark.asyncio
async def test_empty_session_still_prompts(storage, clock) -> None:
    await WizardSessionStore(storage, clock=clock).init_session()
    prompt = await _reopen(storage, clock).check()
    assert prompt is not None
    assert prompt.progress_summary == "with minimal progress"
    assert prompt.step_label == "Basic Information"


@pytest.mark.asyncio
async def test_prompt_shown_at_most_once(storage, clock) -> None:
    await fill_valid_session(WizardSessionStore(storage, clock=clock))
    coordinator = _reopen(storage, clock)

    assert await coordinator.check() is not None
    await coordinator.resume()
    assert coordinator.is_visible is False
    assert await coordinator.check() is None


@pytest.mark.asyncio
async def test_resume_keeps_session_untouched(storage, clock) -> None:
    original = WizardSessionStore(storage, clock=clock)
    await fill_valid_session(original)
    await original.set_current_step(WizardStep.image_upload)
    saved = original.snapshot()

    coordinator = _reopen(storage, clock)
    await coordinator.check()
    session = await coordinator.resume()

    assert session.current_step == WizardStep.image_upload
    assert coordinator.store.snapshot() == saved


@pytest.mark.asyncio
async def test_discard_clears_storage(storage, clock) -> None:
    await fill_valid_session(WizardSessionStore(storage, clock=clock))
    coordinator = _reopen(storage, clock)
    await coordinator.check()

    await coordinator.discard()

    assert coordinator.is_visible is False
    assert coordinator.store.basic_info is None
    assert WIZARD_STORAGE_KEY not in storage


def _prompt(basic: bool, categories: bool, images: int) -> RecoveryPrompt:
    return RecoveryPrompt(
        step=WizardStep.basic_info,
        step_label="Basic Information",
        has_basic_info=basic,
        has_categories=categories,
        image_count=images,
        last_updated=None,
        relative_time="",
        absolute_time="",
    )


@pytest.mark.parametrize(
    "basic, categories, images, expected",
    [
        (True, False, 0, "with basic information"),
        (False, False, 1, "with 1 image"),
        (True, True, 0, "with basic information and category counts"),
        (True, True, 3, "with basic information, category counts, and 3 images"),
    ],
)
def test_progress_summary(basic: bool, categories: bool, images: int, expected: str) -> None:
    assert _prompt(basic, categories, images).progress_summary == expected


@pytest.mark.asyncio
async def test_image_count_is_summarised(storage, clock) -> None:
    store = WizardSessionStore(storage, clock=clock)
    await store.set_image_upload([ImageRef(id="a", filename="a.png", size=10, content_type="image/png")])
    prompt = await _reopen(storage, clock).check()
    assert prompt.image_count == 1
    assert prompt.progress_summary == "with 1 image"


def test_format_relative() -> None:
    now = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
    assert format_relative(now - timedelta(seconds=10), now) == "just now"
    assert format_relative(now - timedelta(minutes=5), now) == "5 minutes ago"
    assert format_relative(now - timedelta(hours=1), now) == "about 1 hour ago"
    assert format_relative(now - timedelta(days=2), now) == "2 days ago"
