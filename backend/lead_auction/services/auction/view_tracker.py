"""
View Tracker

First-view records per (application, bidder) pair, and the conversion
metrics built on them. Insert-if-absent: the unique constraint settles
concurrent first views, so no application scope is needed.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.db_models import OfferDB, ViewRecordDB
from .clock import utcnow
from .serialization import load_application

logger = logging.getLogger(__name__)


class ViewTracker:
    """Idempotent view recording and viewer statistics."""

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or utcnow

    def _find(self, application_id: str, viewer_id: str) -> Optional[ViewRecordDB]:
        return self.db.query(ViewRecordDB).filter(
            ViewRecordDB.application_id == application_id,
            ViewRecordDB.viewer_id == viewer_id,
        ).first()

    def record_view(self, application_id: str, viewer_id: str) -> bool:
        """
        Record a bidder viewing an application.

        Returns True only for the first view of the pair. A concurrent first
        view losing the insert race reports False.
        """
        load_application(self.db, application_id)

        if self._find(application_id, viewer_id) is not None:
            return False

        self.db.add(ViewRecordDB(
            id=str(uuid4()),
            application_id=application_id,
            viewer_id=viewer_id,
            first_viewed_at=self.clock(),
        ))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"View of {application_id} by {viewer_id} already recorded by a concurrent request")
            return False

        logger.info(f"First view of application {application_id} by bidder {viewer_id}")
        return True

    def first_viewed_at(self, application_id: str, viewer_id: str) -> Optional[datetime]:
        record = self._find(application_id, viewer_id)
        return record.first_viewed_at if record else None

    def count_distinct_viewers(self, application_id: str) -> int:
        return self.db.query(func.count(ViewRecordDB.id)).filter(
            ViewRecordDB.application_id == application_id,
        ).scalar() or 0

    def applications_viewed(self, viewer_id: str) -> List[str]:
        rows = self.db.query(ViewRecordDB.application_id).filter(
            ViewRecordDB.viewer_id == viewer_id,
        ).order_by(ViewRecordDB.first_viewed_at).all()
        return [row.application_id for row in rows]

    def conversion_rate(self, viewer_id: str) -> float:
        """
        Offers submitted on viewed applications / applications viewed.

        Offers on applications the bidder never viewed do not count.
        """
        viewed = self.db.query(func.count(ViewRecordDB.id)).filter(
            ViewRecordDB.viewer_id == viewer_id,
        ).scalar() or 0
        if viewed == 0:
            return 0.0

        offered = self.db.query(func.count(OfferDB.id)).join(
            ViewRecordDB,
            (ViewRecordDB.application_id == OfferDB.application_id)
            & (ViewRecordDB.viewer_id == OfferDB.bidder_id),
        ).filter(OfferDB.bidder_id == viewer_id).scalar() or 0

        return offered / viewed
