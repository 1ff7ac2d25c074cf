"""
store.py — Data access facade for submitted tickets.

  - All functions are async and accept an AsyncSession parameter
  - ORM-only queries
  - Logs only ticket_id / session_id, never ticket contents
  - Returns domain Pydantic objects so callers are persistence-agnostic
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracker.config import settings
from tracker.models.ticket import TicketORM
from tracker.wizard.schemas import TicketSubmission
from tracker.wizard.validator import parse_ticket_date

logger = logging.getLogger(__name__)


async def save_ticket(
    db: AsyncSession,
    submission: TicketSubmission,
    now: Optional[datetime] = None,
) -> str:
    """
    Persist a validated TicketSubmission and return its new ticket id.
    Images are scheduled for archiving `image_archive_after_days` after submission.
    Uses flush() (not commit()) — get_db() handles commit.
    """
    now = now or datetime.now(timezone.utc)
    ticket_id = str(uuid.uuid4())
    orm = TicketORM(
        id=ticket_id,
        session_id=submission.session_id,
        user_id=submission.user_id,
        ticket_data=submission.model_dump(mode="json"),
        ticket_date=parse_ticket_date(submission.basic_info.date),
        images_archive_after=now + timedelta(days=settings.image_archive_after_days),
        created_at=now,
    )
    db.add(orm)
    await db.flush()
    logger.info(
        "Saved ticket ticket_id=%s session_id=%s images=%d",
        ticket_id,
        submission.session_id,
        len(submission.images),
    )
    return ticket_id


async def get_ticket(db: AsyncSession, ticket_id: str) -> Optional[TicketSubmission]:
    """Returns None if no ticket found (caller raises 404)."""
    result = await db.execute(select(TicketORM).where(TicketORM.id == ticket_id))
    orm = result.scalar_one_or_none()
    if orm is None:
        return None
    return TicketSubmission.model_validate(orm.ticket_data)
