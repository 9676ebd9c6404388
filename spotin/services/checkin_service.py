from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from spotin.models import CheckIn, CheckInStatus, Client, LineItemStatus, SessionLineItem
from spotin.services.audit_service import log_check_in_event
from spotin.services.errors import NotFoundError, ValidationError
from spotin.services.steps import committed_step

logger = logging.getLogger(__name__)

INVALID_BARCODE_MESSAGE = 'Invalid barcode. Please try again.'
CLIENT_UNAVAILABLE_MESSAGE = 'Client not found or inactive.'


class CheckInState(str, Enum):
    CHECKED_IN = 'checked_in'
    CHECKED_OUT = 'checked_out'

    @classmethod
    def from_active(cls, active: bool) -> CheckInState:
        return cls.CHECKED_IN if active else cls.CHECKED_OUT

    def toggled(self) -> CheckInState:
        if self is CheckInState.CHECKED_IN:
            return CheckInState.CHECKED_OUT
        return CheckInState.CHECKED_IN


@dataclass(frozen=True)
class ClientSnapshot:
    id: int
    client_code: str
    full_name: str
    phone: str
    email: str | None
    barcode: str
    active: bool

    @classmethod
    def from_client(cls, client: Client) -> ClientSnapshot:
        return cls(
            id=client.id,
            client_code=client.client_code,
            full_name=client.full_name,
            phone=client.phone,
            email=client.email,
            barcode=client.barcode,
            active=client.active,
        )


@dataclass(frozen=True)
class CheckInResult:
    action: CheckInState
    client: ClientSnapshot
    closed_check_ins: int = 0
    cancelled_line_items: int = 0
    check_in_id: int | None = None

    def as_payload(self) -> dict:
        return {
            'success': True,
            'action': self.action.value,
            'client': asdict(self.client),
        }


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def find_client_by_scan(db: Session, raw_code: str | None) -> Client:
    code = (raw_code or '').strip()
    if not code:
        raise NotFoundError(INVALID_BARCODE_MESSAGE)

    matches = db.execute(
        select(Client).where(
            or_(Client.barcode == code, Client.client_code == code),
            Client.is_active.is_(True),
        )
    ).scalars().all()
    if len(matches) != 1:
        if matches:
            logger.warning('Scan %r matched %d clients', code, len(matches))
        raise NotFoundError(INVALID_BARCODE_MESSAGE)
    return matches[0]


def _get_available_client(db: Session, client_id: int) -> Client:
    client = db.execute(
        select(Client).where(Client.id == client_id, Client.is_active.is_(True))
    ).scalar_one_or_none()
    if not client:
        raise NotFoundError(CLIENT_UNAVAILABLE_MESSAGE)
    return client


def close_open_check_ins(db: Session, *, client_id: int, now: datetime) -> int:
    ids = db.execute(
        select(CheckIn.id).where(
            CheckIn.client_id == client_id,
            CheckIn.status == CheckInStatus.CHECKED_IN,
            CheckIn.checked_out_at.is_(None),
        )
    ).scalars().all()
    if ids:
        db.execute(
            update(CheckIn).where(CheckIn.id.in_(ids)).values(status=CheckInStatus.CHECKED_OUT, checked_out_at=now)
        )
    return len(ids)


def cancel_pending_line_items(db: Session, *, client_id: int) -> int:
    ids = db.execute(
        select(SessionLineItem.id).where(
            SessionLineItem.user_id == client_id,
            SessionLineItem.status == LineItemStatus.PENDING,
        )
    ).scalars().all()
    if ids:
        db.execute(update(SessionLineItem).where(SessionLineItem.id.in_(ids)).values(status=LineItemStatus.CANCELLED))
    return len(ids)


def _check_out(db: Session, client: Client, *, now: datetime) -> tuple[int, int]:
    with committed_step(db, 'mark_client_checked_out'):
        client.active = False
    with committed_step(db, 'close_check_ins'):
        closed = close_open_check_ins(db, client_id=client.id, now=now)
    with committed_step(db, 'cancel_pending_orders'):
        cancelled = cancel_pending_line_items(db, client_id=client.id)
    logger.info(
        'Client %s checked out: closed %d check-in(s), cancelled %d pending line item(s)',
        client.id,
        closed,
        cancelled,
    )
    return closed, cancelled


def _check_in(db: Session, client: Client, *, actor_user_id: int | None, now: datetime) -> tuple[int, int, int]:
    # Leftovers from a visit that never checked out cleanly.
    with committed_step(db, 'close_stale_check_ins'):
        closed = close_open_check_ins(db, client_id=client.id, now=now)
    with committed_step(db, 'cancel_stale_orders'):
        cancelled = cancel_pending_line_items(db, client_id=client.id)
    if closed or cancelled:
        logger.warning(
            'Client %s had a stale session: closed %d check-in(s), cancelled %d pending line item(s)',
            client.id,
            closed,
            cancelled,
        )

    with committed_step(db, 'mark_client_checked_in'):
        client.active = True
    record = CheckIn(
        client_id=client.id,
        user_id=actor_user_id or client.id,
        status=CheckInStatus.CHECKED_IN,
        checked_in_at=now,
    )
    with committed_step(db, 'open_check_in'):
        db.add(record)
    logger.info('Client %s checked in (check-in %s)', client.id, record.id)
    return closed, cancelled, record.id


def _apply_transition(
    db: Session,
    client: Client,
    target: CheckInState,
    *,
    actor_user_id: int | None,
    scanned_barcode: str,
    notes: str,
) -> CheckInResult:
    now = _now()
    check_in_id = None
    if target is CheckInState.CHECKED_OUT:
        closed, cancelled = _check_out(db, client, now=now)
    else:
        closed, cancelled, check_in_id = _check_in(db, client, actor_user_id=actor_user_id, now=now)

    log_check_in_event(
        db,
        client_id=client.id,
        action=target.value,
        scanned_barcode=scanned_barcode,
        scanned_by_user_id=actor_user_id,
        notes=notes,
    )
    return CheckInResult(
        action=target,
        client=ClientSnapshot.from_client(client),
        closed_check_ins=closed,
        cancelled_line_items=cancelled,
        check_in_id=check_in_id,
    )


def toggle_checkin_status(db: Session, *, barcode: str | None, scanned_by_user_id: int | None = None) -> CheckInResult:
    """Flip a client between checked in and checked out from a scanned barcode or client code."""
    client = find_client_by_scan(db, barcode)
    target = CheckInState.from_active(client.active).toggled()
    logger.info('Scan for client %s (%s): %s', client.id, client.client_code, target.value)
    return _apply_transition(
        db,
        client,
        target,
        actor_user_id=scanned_by_user_id,
        scanned_barcode=(barcode or '').strip(),
        notes=f'Successful {target.value} via barcode scan',
    )


def manual_check_in(db: Session, *, client_id: int, checked_in_by: int | None = None) -> CheckInResult:
    client = _get_available_client(db, client_id)
    if client.active:
        raise ValidationError('Client is already checked in.')
    return _apply_transition(
        db,
        client,
        CheckInState.CHECKED_IN,
        actor_user_id=checked_in_by,
        scanned_barcode=client.barcode,
        notes='Manual check-in by staff',
    )


def manual_check_out(db: Session, *, client_id: int, checked_out_by: int | None = None) -> CheckInResult:
    client = _get_available_client(db, client_id)
    if not client.active:
        raise ValidationError('Client is already checked out.')
    return _apply_transition(
        db,
        client,
        CheckInState.CHECKED_OUT,
        actor_user_id=checked_out_by,
        scanned_barcode=client.barcode,
        notes='Manual checkout by staff',
    )


def list_active_sessions(db: Session) -> list[dict]:
    pending = (
        select(
            SessionLineItem.user_id.label('client_id'),
            func.count(SessionLineItem.id).label('pending_items'),
            func.coalesce(func.sum(SessionLineItem.price * SessionLineItem.quantity), 0).label('pending_total'),
        )
        .where(SessionLineItem.status == LineItemStatus.PENDING)
        .group_by(SessionLineItem.user_id)
        .subquery()
    )
    rows = db.execute(
        select(
            Client.id,
            Client.client_code,
            Client.full_name,
            Client.phone,
            Client.barcode,
            CheckIn.id.label('check_in_id'),
            CheckIn.checked_in_at,
            func.coalesce(pending.c.pending_items, 0).label('pending_items'),
            func.coalesce(pending.c.pending_total, 0).label('pending_total'),
        )
        .outerjoin(
            CheckIn,
            and_(
                CheckIn.client_id == Client.id,
                CheckIn.status == CheckInStatus.CHECKED_IN,
                CheckIn.checked_out_at.is_(None),
            ),
        )
        .outerjoin(pending, pending.c.client_id == Client.id)
        .where(Client.active.is_(True), Client.is_active.is_(True))
        .order_by(CheckIn.checked_in_at.asc(), Client.full_name.asc())
    ).all()
    return [
        {
            'client_id': row.id,
            'client_code': row.client_code,
            'full_name': row.full_name,
            'phone': row.phone,
            'barcode': row.barcode,
            'check_in_id': row.check_in_id,
            'checked_in_at': row.checked_in_at,
            'pending_items': int(row.pending_items),
            'pending_total': Decimal(str(row.pending_total)).quantize(Decimal('0.01')),
        }
        for row in rows
    ]


def list_checkin_history(db: Session, *, client_id: int, limit: int = 50) -> list[CheckIn]:
    return db.execute(
        select(CheckIn)
        .where(CheckIn.client_id == client_id)
        .order_by(CheckIn.checked_in_at.desc(), CheckIn.id.desc())
        .limit(limit)
    ).scalars().all()
