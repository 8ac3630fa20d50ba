"""Audit logging service.

Records security-relevant events (failed auth, credential changes, inline
cloud operations) in ``audit_logs``.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from cloudrecon.core.logging import get_logger
from cloudrecon.db.models import AuditLog

logger = get_logger(__name__)


def _client_ip_from_request(request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for", "")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip() or None
    if request.client:
        return request.client.host
    return None


def audit_log_event(
    db: DBSession,
    *,
    event_type: str,
    user_id: Optional[str],
    request=None,
    data: Optional[dict[str, Any]] = None,
) -> None:
    """Persist an audit log entry.

    Failures are logged and rolled back; they never fail the request path.
    """
    if db is None:
        return

    try:
        entry = AuditLog(
            user_id=user_id,
            event_type=event_type,
            ip=_client_ip_from_request(request) if request is not None else None,
            user_agent=request.headers.get("user-agent") if request is not None else None,
            path=request.url.path if request is not None else None,
            method=request.method if request is not None else None,
            data_json=data,
        )
        db.add(entry)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Audit log write failed", data={"event_type": event_type, "error": str(exc)})
