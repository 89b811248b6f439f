"""
StudyPartner - Adaptive State Store
Persists one AdaptiveState blob per session in the adaptive_states table.
A missing, malformed or unreadable row loads as a fresh tracker.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from studypartner.database import get_session_factory
from studypartner.models import AdaptiveStateRecord, utcnow
from studypartner.intelligence.adaptive_tracker import AdaptiveTracker, restore_tracker

logger = logging.getLogger("studypartner.state_store")


class AdaptiveStateStore:

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or get_session_factory()

    def load(self, session_id: str) -> AdaptiveTracker:
        try:
            with self._session_factory() as db:
                row = db.get(AdaptiveStateRecord, session_id)
                blob = row.state_json if row else None
        except SQLAlchemyError as e:
            logger.warning(f"Could not load adaptive state for {session_id}: {e}")
            return AdaptiveTracker()
        return restore_tracker(blob)

    def save(self, session_id: str, tracker: AdaptiveTracker) -> bool:
        blob = tracker.to_json()
        try:
            with self._session_factory() as db:
                row = db.get(AdaptiveStateRecord, session_id)
                if row is None:
                    db.add(AdaptiveStateRecord(session_id=session_id, state_json=blob, updated_at=utcnow()))
                else:
                    row.state_json = blob
                    row.updated_at = utcnow()
                db.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Could not save adaptive state for {session_id}: {e}")
            return False
        return True

    def delete(self, session_id: str) -> bool:
        """Drop a session's state. False when nothing was stored or the store failed."""
        try:
            with self._session_factory() as db:
                deleted = (
                    db.query(AdaptiveStateRecord)
                    .filter(AdaptiveStateRecord.session_id == session_id)
                    .delete()
                )
                db.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Could not delete adaptive state for {session_id}: {e}")
            return False
        return deleted > 0
