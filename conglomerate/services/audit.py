# conglomerate/services/audit.py
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from conglomerate.models.audit import AuditLog

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def record_audit(
    bind,
    actor_id: Optional[str],
    action: str,
    entity_type: Optional[str],
    entity_id: Optional[str],
    metadata: Optional[dict] = None,
) -> None:
    """Write an audit row in its own session.

    Called after the primary change has committed; a failure here is logged
    and never reaches the caller.
    """
    try:
        with Session(bind=bind) as session:
            session.add(AuditLog(
                actor_user_id=actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                meta=_jsonable(metadata or {}),
            ))
            session.commit()
    except SQLAlchemyError:
        logger.exception("Failed to record audit %s on %s/%s", action, entity_type, entity_id)
