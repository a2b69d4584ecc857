"""
Problem Timeline

Append-only history of everything that happened to a problem. Events are
added to the caller's session so they commit (or roll back) together with
the change they describe. Rows are never updated or deleted.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models.db_models import TimelineEventDB, TimelineEventType
from ..validation import mask_identity


logger = logging.getLogger(__name__)


class TimelineService:

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        problem_id: int,
        event_type: TimelineEventType,
        actor_identity: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TimelineEventDB:
        event = TimelineEventDB(
            problem_id=problem_id,
            event_type=event_type,
            actor_identity=actor_identity,
            event_metadata=dict(metadata) if metadata else None,
        )
        self.db.add(event)
        logger.debug(f"Timeline event {event_type.value} queued for problem {problem_id}")
        return event

    def get_timeline(self, problem_id: int, mask: bool = False) -> List[Dict[str, Any]]:
        events = (
            self.db.query(TimelineEventDB)
            .filter(TimelineEventDB.problem_id == problem_id)
            .order_by(TimelineEventDB.created_at.asc(), TimelineEventDB.id.asc())
            .all()
        )
        return [
            {
                "id": e.id,
                "event_type": e.event_type.value,
                "actor": mask_identity(e.actor_identity) if mask else e.actor_identity,
                "metadata": e.event_metadata or {},
                "timestamp": e.created_at.isoformat() if e.created_at else None,
            }
            for e in events
        ]

    def get_timeline_stats(self, problem_id: int) -> Dict[str, int]:
        """Event count per event type."""
        rows = (
            self.db.query(TimelineEventDB.event_type, func.count(TimelineEventDB.id))
            .filter(TimelineEventDB.problem_id == problem_id)
            .group_by(TimelineEventDB.event_type)
            .all()
        )
        return {event_type.value: count for event_type, count in rows}
