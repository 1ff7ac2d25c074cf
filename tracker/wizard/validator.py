"""
Ticket wizard business-rule validator.

Runs client-side before any network call and again server-side in routes.py.
Collects all violations in a single pass and raises WizardValidationError whose
message is a JSON-encoded list of {field, issue} dicts.

Rules enforced:
  1. basic info    date is YYYY-MM-DD and not in the future; truck + jobsite selected
  2. categories    exactly the six counters, each a whole number in [0, 150]
  3. images        at most 10; JPEG/PNG/GIF/WebP/HEIC/HEIF; 0 < size <= 10 MB

All-zero counters are a valid ticket.
"""
from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional

from tracker.config import settings
from tracker.errors import WizardValidationError
from tracker.wizard.schemas import (
    CATEGORY_KEYS,
    BasicInfo,
    ImageRef,
    TicketSubmission,
    WizardSession,
    WizardStep,
)

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ALLOWED_IMAGE_TYPES = re.compile(r"^image/(jpeg|png|gif|webp|heic|heif)$")
_MAX_IMAGE_SIZE = 10 * 1024 * 1024  # 10 MB

# Counter colour bands shown next to each category
_COLOR_YELLOW_MIN = 1
_COLOR_GREEN_MIN = 85
_COLOR_GOLD_MIN = 125


def parse_ticket_date(value: Optional[str]) -> Optional[date]:
    """Return the calendar date for a YYYY-MM-DD string, or None if malformed."""
    if not value or not _DATE_RE.match(value):
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None


def total_count(categories: Mapping[str, int]) -> int:
    return sum(categories.values())


def counter_color(value: int) -> str:
    if value < _COLOR_YELLOW_MIN:
        return "red"
    if value < _COLOR_GREEN_MIN:
        return "yellow"
    if value < _COLOR_GOLD_MIN:
        return "green"
    return "gold"


# ---------------------------------------------------------------------------
# Per-step rule collectors
# ---------------------------------------------------------------------------

def _basic_info_violations(info: Optional[BasicInfo], today: date) -> list[dict[str, Any]]:
    if info is None:
        info = BasicInfo()
    violations: list[dict[str, Any]] = []

    if not info.date:
        violations.append({"field": "date", "issue": "Date is required"})
    else:
        parsed = parse_ticket_date(info.date)
        if parsed is None:
            violations.append({"field": "date", "issue": "Invalid date format. Use YYYY-MM-DD"})
        elif parsed > today:
            violations.append({"field": "date", "issue": "Date cannot be in the future"})

    if not info.truck_id:
        violations.append({"field": "truck_id", "issue": "Please select a truck"})
    if not info.jobsite_id:
        violations.append({"field": "jobsite_id", "issue": "Please select a jobsite"})
    return violations


def _category_violations(
    categories: Optional[Mapping[str, Any]], maximum: int
) -> list[dict[str, Any]]:
    categories = categories or {}
    violations: list[dict[str, Any]] = []

    for key in CATEGORY_KEYS:
        if key not in categories:
            violations.append({"field": key, "issue": "Value is required"})
            continue
        value = categories[key]
        # bool is an int subclass; a checkbox value is not a count
        if not isinstance(value, int) or isinstance(value, bool):
            violations.append({"field": key, "issue": "Value must be a whole number"})
        elif value < 0:
            violations.append({"field": key, "issue": "Value cannot be negative"})
        elif value > maximum:
            violations.append({"field": key, "issue": f"Value cannot exceed {maximum}"})

    for key in categories:
        if key not in CATEGORY_KEYS:
            violations.append({"field": key, "issue": f"Unknown category '{key}'"})
    return violations


def _image_violations(images: Iterable[ImageRef], max_images: int) -> list[dict[str, Any]]:
    images = list(images)
    violations: list[dict[str, Any]] = []

    if len(images) > max_images:
        violations.append({
            "field": "images",
            "issue": f"Too many images. Maximum allowed is {max_images}.",
        })

    for index, image in enumerate(images):
        field = f"images.{index}"
        if not _ALLOWED_IMAGE_TYPES.match(image.content_type):
            violations.append({
                "field": field,
                "issue": "Invalid image type. Supported formats: JPEG, PNG, GIF, WebP, HEIC, HEIF",
            })
        if image.size <= 0:
            violations.append({"field": field, "issue": "Image size must be positive"})
        elif image.size > _MAX_IMAGE_SIZE:
            violations.append({
                "field": field,
                "issue": f"Image size exceeds the maximum allowed size ({_MAX_IMAGE_SIZE // (1024 * 1024)}MB).",
            })
    return violations


def _raise_if_any(violations: list[dict[str, Any]], context: str) -> None:
    if violations:
        # Field names only; values may identify a jobsite or truck
        logger.debug(
            "%s validation failed fields=%s",
            context,
            [v["field"] for v in violations],
        )
        raise WizardValidationError(violations)


# ---------------------------------------------------------------------------
# Public validators
# ---------------------------------------------------------------------------

def validate_basic_info(info: Optional[BasicInfo], today: Optional[date] = None) -> None:
    _raise_if_any(_basic_info_violations(info, today or date.today()), "basic_info")


def validate_categories(
    categories: Optional[Mapping[str, Any]], maximum: Optional[int] = None
) -> None:
    maximum = settings.wizard_category_max if maximum is None else maximum
    _raise_if_any(_category_violations(categories, maximum), "categories")


def validate_images(images: Iterable[ImageRef], max_images: Optional[int] = None) -> None:
    max_images = settings.wizard_max_images if max_images is None else max_images
    _raise_if_any(_image_violations(images, max_images), "images")


def validate_submission(submission: TicketSubmission, today: Optional[date] = None) -> None:
    """Validate the whole aggregated payload, reporting every step's violations together."""
    violations = (
        _basic_info_violations(submission.basic_info, today or date.today())
        + _category_violations(submission.categories, settings.wizard_category_max)
        + _image_violations(submission.images, settings.wizard_max_images)
    )
    _raise_if_any(violations, "submission")


def validate_step(step: WizardStep, session: WizardSession, today: Optional[date] = None) -> None:
    """Run the rules for one wizard step against the session's data for that step."""
    if step == WizardStep.basic_info:
        validate_basic_info(session.basic_info, today)
    elif step == WizardStep.categories:
        validate_categories(session.categories)
    elif step == WizardStep.image_upload:
        validate_images(session.image_upload)
    elif step == WizardStep.confirmation:
        validate_submission(
            TicketSubmission(
                basic_info=session.basic_info or BasicInfo(),
                categories=session.categories or {},
                images=session.image_upload,
            ),
            today,
        )
