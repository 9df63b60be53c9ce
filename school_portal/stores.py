import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .domain import StorageUnavailable
from .models import FamilyLink

logger = logging.getLogger(__name__)


class SqlFamilyLinkStore:
    """Read-only family link lookups backed by the request's session."""

    def __init__(self, db: Session):
        self.db = db

    def list_linked_students(self, user_id: int) -> frozenset[int]:
        try:
            rows = self.db.execute(select(FamilyLink.student_id).where(FamilyLink.user_id == user_id))
            return frozenset(rows.scalars().all())
        except SQLAlchemyError as exc:
            logger.error(f"Family link lookup failed for user {user_id}: {exc}")
            raise StorageUnavailable("Family link lookup failed") from exc
