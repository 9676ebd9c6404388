from __future__ import annotations

import logging
import re
import secrets
import string
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from spotin.models import Client
from spotin.services.checkin_service import manual_check_out
from spotin.services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

BARCODE_ALPHABET = string.ascii_uppercase + string.digits
BARCODE_LENGTH = 6
WS_RE = re.compile(r'\s+')


def _clean(value: str | None) -> str:
    return WS_RE.sub(' ', (value or '').strip())


def _next_client_code(db: Session, *, year: int) -> str:
    prefix = f'C-{year}-'
    last_code = db.execute(
        select(func.max(Client.client_code)).where(Client.client_code.like(f'{prefix}%'))
    ).scalar_one_or_none()
    sequence = int(last_code[len(prefix) :]) + 1 if last_code else 1
    return f'{prefix}{sequence:06d}'


def _new_barcode(db: Session) -> str:
    while True:
        candidate = ''.join(secrets.choice(BARCODE_ALPHABET) for _ in range(BARCODE_LENGTH))
        taken = db.execute(select(Client.id).where(Client.barcode == candidate)).scalar_one_or_none()
        if not taken:
            return candidate


def register_client(
    db: Session,
    *,
    first_name: str,
    last_name: str,
    phone: str,
    email: str | None = None,
    barcode: str | None = None,
) -> Client:
    first = _clean(first_name)
    last = _clean(last_name)
    clean_phone = _clean(phone)
    missing = [label for label, value in (('first name', first), ('last name', last), ('phone', clean_phone)) if not value]
    if missing:
        raise ValidationError(f'Missing required field(s): {", ".join(missing)}')

    clean_email = _clean(email).lower() or None
    if clean_email and '@' not in clean_email:
        raise ValidationError('Invalid email address')

    if barcode:
        barcode = _clean(barcode).upper()
        taken = db.execute(select(Client.id).where(Client.barcode == barcode)).scalar_one_or_none()
        if taken:
            raise ValidationError('Barcode is already assigned to another client')
    else:
        barcode = _new_barcode(db)

    client = Client(
        client_code=_next_client_code(db, year=datetime.now(tz=timezone.utc).year),
        barcode=barcode,
        first_name=first,
        last_name=last,
        full_name=f'{first} {last}',
        phone=clean_phone,
        email=clean_email,
        active=False,
        is_active=True,
    )
    db.add(client)
    db.flush()
    logger.info('Registered client %s (%s)', client.client_code, client.full_name)
    return client


def get_client(db: Session, *, client_id: int) -> Client:
    client = db.execute(select(Client).where(Client.id == client_id)).scalar_one_or_none()
    if not client:
        raise NotFoundError('Client not found')
    return client


def list_clients(db: Session, *, include_inactive: bool = False, search: str | None = None) -> list[Client]:
    query = select(Client)
    if not include_inactive:
        query = query.where(Client.is_active.is_(True))
    term = _clean(search)
    if term:
        pattern = f'%{term.lower()}%'
        query = query.where(
            func.lower(Client.full_name).like(pattern)
            | func.lower(Client.client_code).like(pattern)
            | Client.phone.like(f'%{term}%')
            | (Client.barcode == term.upper())
        )
    return db.execute(query.order_by(Client.created_at.desc(), Client.id.desc())).scalars().all()


def deactivate_client(db: Session, *, client_id: int, deactivated_by: int | None = None) -> Client:
    """Soft-delete a client; a client still on premises is checked out first."""
    client = get_client(db, client_id=client_id)
    if not client.is_active:
        return client
    if client.active:
        manual_check_out(db, client_id=client.id, checked_out_by=deactivated_by)
    client.is_active = False
    db.flush()
    logger.info('Deactivated client %s', client.client_code)
    return client
