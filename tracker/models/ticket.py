"""
models/ticket.py — SQLAlchemy ORM model for submitted tickets.

Table: tickets
Storage strategy: the whole TicketSubmission as a JSON blob (JSONB on PostgreSQL).
Only the ticket date and the image archive date get their own columns.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Date, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from tracker.database import Base


class TicketORM(Base):
    """
    ORM model for a finalized ticket.

    ticket_data: TicketSubmission (basic info, categories, image refs) as JSON.
    images_archive_after: images older than this move to cold storage.
    """
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    session_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Wizard session that produced this ticket",
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    ticket_data: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
    )
    ticket_date: Mapped[date] = mapped_column(Date, nullable=False)
    images_archive_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
