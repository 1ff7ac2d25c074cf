"""
models/__init__.py — imports all ORM models so Base.metadata sees them
when the lifespan runs create_all.
"""
from tracker.models.ticket import TicketORM

__all__ = ["TicketORM"]
