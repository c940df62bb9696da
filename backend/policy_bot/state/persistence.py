"""
SQLAlchemy write-through store for FlowStateManager.

Every failure here is logged and swallowed: losing the persisted copy only
means a flow has to be restarted after a reboot.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import Engine

from policy_bot.db.base import Base
from policy_bot.db.session import make_session_factory
from policy_bot.models.flow_state import FlowStateRecord

logger = logging.getLogger(__name__)


def to_json_safe(obj: Any) -> Any:
    """Convert Decimal/datetime values so the payload fits a JSON column."""
    if isinstance(obj, dict):
        return {str(k): to_json_safe(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [to_json_safe(v) for v in obj]
    elif isinstance(obj, Decimal):
        return float(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return obj


class FlowStateStore:
    """Mirror of the flow-state maps in the `flow_states` table."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = make_session_factory(engine)

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def upsert(self, context_key: str, policy_number: str, entry: Dict[str, Any]) -> bool:
        payload = to_json_safe({k: v for k, v in entry.items() if k != "created_at"})
        db = self.session_factory()
        try:
            record = db.query(FlowStateRecord).filter(
                FlowStateRecord.context_key == context_key,
                FlowStateRecord.policy_number == policy_number,
            ).first()

            if record:
                record.payload = payload
                record.created_at = entry["created_at"]
            else:
                db.add(FlowStateRecord(
                    context_key=context_key,
                    policy_number=policy_number,
                    payload=payload,
                    created_at=entry["created_at"],
                ))
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[FlowStateStore] Failed to save {context_key}/{policy_number}: {e}")
            return False
        finally:
            db.close()

    def delete(self, context_key: str, policy_number: Optional[str] = None) -> int:
        """Delete one flow, or every flow of the context when policy_number is None."""
        db = self.session_factory()
        try:
            query = db.query(FlowStateRecord).filter(FlowStateRecord.context_key == context_key)
            if policy_number is not None:
                query = query.filter(FlowStateRecord.policy_number == policy_number)
            deleted = query.delete(synchronize_session=False)
            db.commit()
            return deleted
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[FlowStateStore] Failed to delete {context_key}/{policy_number}: {e}")
            return 0
        finally:
            db.close()

    def load_all(self) -> List[Tuple[str, str, Dict[str, Any]]]:
        """Return (context_key, policy_number, entry) for every stored flow."""
        db = self.session_factory()
        try:
            rows = db.query(FlowStateRecord).order_by(FlowStateRecord.id).all()
            loaded = []
            for row in rows:
                entry = dict(row.payload or {})
                entry["created_at"] = row.created_at
                loaded.append((row.context_key, row.policy_number, entry))
            return loaded
        except SQLAlchemyError as e:
            logger.error(f"[FlowStateStore] Failed to load flow states: {e}")
            return []
        finally:
            db.close()
