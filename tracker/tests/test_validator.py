"""
Unit tests for the ticket wizard business-rule validator.

Run from the project root: pytest tracker/tests/test_validator.py -v
"""
from __future__ import annotations

import json
from datetime import date

import pytest

from tracker.errors import WizardValidationError
from tracker.wizard.schemas import CATEGORY_KEYS, BasicInfo, ImageRef, TicketSubmission
from tracker.wizard.validator import (
    counter_color,
    parse_ticket_date,
    total_count,
    validate_basic_info,
    validate_categories,
    validate_images,
    validate_submission,
)

TODAY = date(2025, 3, 10)


def _zeros() -> dict:
    return {key: 0 for key in CATEGORY_KEYS}


def _fields(exc: pytest.ExceptionInfo) -> list:
    return [v["field"] for v in exc.value.violations]


# ---------------------------------------------------------------------------
# Basic info
# ---------------------------------------------------------------------------

def test_valid_basic_info_passes() -> None:
    validate_basic_info(BasicInfo(date="2025-03-10", truck_id="t", jobsite_id="j"), TODAY)


def test_missing_basic_info_reports_every_field() -> None:
    with pytest.raises(WizardValidationError) as exc:
        validate_basic_info(None, TODAY)
    assert _fields(exc) == ["date", "truck_id", "jobsite_id"]


@pytest.mark.parametrize("value", ["03/10/2025", "2025-3-1", "2025-02-30"])
def test_malformed_date_rejected(value: str) -> None:
    with pytest.raises(WizardValidationError) as exc:
        validate_basic_info(BasicInfo(date=value, truck_id="t", jobsite_id="j"), TODAY)
    assert exc.value.user_message == "Invalid date format. Use YYYY-MM-DD"


def test_future_date_rejected() -> None:
    with pytest.raises(WizardValidationError) as exc:
        validate_basic_info(BasicInfo(date="2025-03-11", truck_id="t", jobsite_id="j"), TODAY)
    assert exc.value.user_message == "Date cannot be in the future"


def test_parse_ticket_date() -> None:
    assert parse_ticket_date("2025-01-31") == date(2025, 1, 31)
    assert parse_ticket_date("") is None
    assert parse_ticket_date(None) is None


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def test_all_zero_counts_are_valid() -> None:
    validate_categories(_zeros())


def test_boundary_counts_are_valid() -> None:
    categories = _zeros()
    categories["category1"] = 150
    validate_categories(categories)


@pytest.mark.parametrize(
    "value, issue",
    [
        (-1, "Value cannot be negative"),
        (151, "Value cannot exceed 150"),
        (2.5, "Value must be a whole number"),
        (True, "Value must be a whole number"),
        ("7", "Value must be a whole number"),
    ],
)
def test_invalid_count_rejected(value, issue: str) -> None:
    categories = _zeros()
    categories["category3"] = value
    with pytest.raises(WizardValidationError) as exc:
        validate_categories(categories)
    assert exc.value.violations == [{"field": "category3", "issue": issue}]


def test_missing_and_unknown_categories_reported_together() -> None:
    categories = _zeros()
    del categories["category6"]
    categories["category9"] = 1
    with pytest.raises(WizardValidationError) as exc:
        validate_categories(categories)
    assert _fields(exc) == ["category6", "category9"]


def test_error_message_is_json_violation_list() -> None:
    with pytest.raises(WizardValidationError) as exc:
        validate_categories({})
    decoded = json.loads(str(exc.value))
    assert len(decoded) == 6
    assert decoded[0] == {"field": "category1", "issue": "Value is required"}


def test_total_count() -> None:
    assert total_count({"category1": 3, "category2": 4}) == 7


@pytest.mark.parametrize(
    "value, colour",
    [(0, "red"), (1, "yellow"), (84, "yellow"), (85, "green"), (124, "green"), (125, "gold"), (150, "gold")],
)
def test_counter_color_bands(value: int, colour: str) -> None:
    assert counter_color(value) == colour


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

def _image(index: int, **overrides) -> ImageRef:
    data = {"id": f"img-{index}", "filename": f"{index}.jpg", "size": 1024}
    data.update(overrides)
    return ImageRef(**data)


def test_no_images_is_valid() -> None:
    validate_images([])


def test_too_many_images_rejected() -> None:
    with pytest.raises(WizardValidationError) as exc:
        validate_images([_image(i) for i in range(11)])
    assert exc.value.user_message == "Too many images. Maximum allowed is 10."


def test_unsupported_type_and_oversize_rejected() -> None:
    images = [
        _image(0, content_type="application/pdf"),
        _image(1, size=10 * 1024 * 1024 + 1),
        _image(2, content_type="image/heic"),
    ]
    with pytest.raises(WizardValidationError) as exc:
        validate_images(images)
    assert _fields(exc) == ["images.0", "images.1"]


# ---------------------------------------------------------------------------
# Whole submission
# ---------------------------------------------------------------------------

def test_submission_collects_violations_from_every_step() -> None:
    submission = TicketSubmission(
        basic_info=BasicInfo(date="2025-03-10", jobsite_id="j"),
        categories={**_zeros(), "category2": 200},
        images=[_image(0, size=0)],
    )
    with pytest.raises(WizardValidationError) as exc:
        validate_submission(submission, TODAY)
    assert _fields(exc) == ["truck_id", "category2", "images.0"]
