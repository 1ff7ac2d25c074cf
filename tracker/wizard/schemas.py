"""
schemas.py — Ticket wizard Pydantic v2 data contracts.

Defines:
  - WizardStep enum + WIZARD_STEPS order + STEP_LABELS
  - BasicInfo, ImageRef, SessionMetadata
  - WizardSession          (the persisted in-progress submission)
  - TicketSubmission       (aggregated payload sent to the finalize endpoint)
  - ErrorDetail, ErrorBody, ErrorResponse  (cross-cutting error envelope)

The store performs no bounds checking: categories are a plain dict[str, int] here.
Range and count rules live in validator.py.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

class WizardStep(str, Enum):
    basic_info = "basic-info"
    categories = "categories"
    image_upload = "image-upload"
    confirmation = "confirmation"


WIZARD_STEPS: List[WizardStep] = [
    WizardStep.basic_info,
    WizardStep.categories,
    WizardStep.image_upload,
    WizardStep.confirmation,
]

STEP_LABELS: Dict[WizardStep, str] = {
    WizardStep.basic_info: "Basic Information",
    WizardStep.categories: "Categories",
    WizardStep.image_upload: "Image Upload",
    WizardStep.confirmation: "Confirmation",
}

# Remote endpoint segment for each step that is checkpointed
STEP_ENDPOINTS: Dict[WizardStep, str] = {
    WizardStep.basic_info: "step1",
    WizardStep.categories: "step2",
    WizardStep.image_upload: "step3",
}

# Six fixed counters on the categories step
CATEGORY_KEYS: List[str] = [
    "category1",
    "category2",
    "category3",
    "category4",
    "category5",
    "category6",
]


# ---------------------------------------------------------------------------
# Step data
# ---------------------------------------------------------------------------

class BasicInfo(BaseModel):
    """Step 1 fields. Date is kept as the raw YYYY-MM-DD string the user picked."""

    date: Optional[str] = None
    truck_id: Optional[str] = None
    jobsite_id: Optional[str] = None
    notes: str = ""


class ImageRef(BaseModel):
    """
    One image attached on step 3.

    preview_url is the local preview; url is filled in once the upload to
    remote storage completes.
    """

    id: str
    filename: str
    size: int
    content_type: str = "image/jpeg"
    preview_url: Optional[str] = None
    url: Optional[str] = None
    expires_at: Optional[datetime] = None


class SessionMetadata(BaseModel):
    session_id: str
    created_at: datetime
    expires_at: datetime
    device_id: str
    user_id: Optional[str] = None


class WizardSession(BaseModel):
    """In-progress ticket submission. is_submitting is transient and never persisted."""

    current_step: WizardStep = WizardStep.basic_info
    basic_info: Optional[BasicInfo] = None
    categories: Optional[Dict[str, int]] = None
    image_upload: List[ImageRef] = Field(default_factory=list)
    metadata: Optional[SessionMetadata] = None
    last_updated: Optional[datetime] = None
    is_submitting: bool = False

    def to_storage(self) -> dict:
        return self.model_dump(mode="json", exclude={"is_submitting"})


# ---------------------------------------------------------------------------
# Finalize payload
# ---------------------------------------------------------------------------

class TicketSubmission(BaseModel):
    """Aggregated wizard payload for POST /api/tickets/wizard/complete."""
    model_config = ConfigDict(extra="forbid")

    basic_info: BasicInfo
    categories: Dict[str, int]
    images: List[ImageRef] = Field(default_factory=list)
    session_id: Optional[str] = None
    user_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    field: Optional[str] = None
    issue: str


class ErrorBody(BaseModel):
    code: str
    message: str
    details: List[ErrorDetail] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: ErrorBody


__all__ = [
    "WizardStep",
    "WIZARD_STEPS",
    "STEP_LABELS",
    "STEP_ENDPOINTS",
    "CATEGORY_KEYS",
    "BasicInfo",
    "ImageRef",
    "SessionMetadata",
    "WizardSession",
    "TicketSubmission",
    "ErrorDetail",
    "ErrorBody",
    "ErrorResponse",
]
