from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spotin.models import AuditLog, AuthEvent, CheckInLog

logger = logging.getLogger(__name__)


def log_auth_event(
    db: Session,
    *,
    attempted_username: str,
    success: bool,
    ip: str | None,
    user_agent: str | None,
    principal_id: int | None = None,
    failure_reason: str | None = None,
) -> None:
    if not success:
        logger.info('Login failed for %r from %s: %s', attempted_username, ip, failure_reason)
    db.add(
        AuthEvent(
            attempted_username=attempted_username,
            success=success,
            failure_reason=failure_reason,
            principal_id=principal_id,
            ip=ip,
            user_agent=user_agent,
        )
    )


def log_audit(
    db: Session,
    *,
    actor_principal_id: int | None,
    action: str,
    ip: str | None,
    metadata: dict | None = None,
) -> None:
    """Stage a staff action row; the caller commits it together with the action."""
    db.add(AuditLog(actor_principal_id=actor_principal_id, action=action, ip=ip, meta=metadata or {}))


def log_check_in_event(
    db: Session,
    *,
    client_id: int,
    action: str,
    scanned_barcode: str,
    scanned_by_user_id: int | None,
    notes: str,
) -> bool:
    """Append to ``check_in_logs`` and commit.

    Best-effort: the status change it describes is already committed, so a
    failed insert is rolled back, logged and reported as ``False``.
    """
    try:
        db.add(
            CheckInLog(
                client_id=client_id,
                action=action,
                scanned_barcode=scanned_barcode,
                scanned_by_user_id=scanned_by_user_id,
                notes=notes,
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning('Failed to log %s for client %s (continuing): %s', action, client_id, exc)
        return False
    return True


def recent_audit_entries(db: Session, *, action: str | None = None, limit: int = 100) -> list[dict]:
    query = select(AuditLog)
    if action:
        query = query.where(AuditLog.action == action.strip().upper())
    rows = db.execute(query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)).scalars().all()
    return [
        {
            'id': row.id,
            'actor_principal_id': row.actor_principal_id,
            'action': row.action,
            'ip': row.ip,
            'metadata': row.meta,
            'created_at': row.created_at,
        }
        for row in rows
    ]
