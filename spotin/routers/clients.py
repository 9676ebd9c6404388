from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from spotin.auth import FRONT_DESK_ROLES, POS_ROLES, Principal, Role, require_role
from spotin.db import get_db
from spotin.dependencies import get_client_ip, http_error
from spotin.models import Client
from spotin.schemas import ClientCreate
from spotin.services.audit_service import log_audit
from spotin.services.client_service import deactivate_client, get_client, list_clients, register_client
from spotin.services.errors import ServiceError

router = APIRouter(prefix='/clients', tags=['clients'])


def _client_payload(client: Client) -> dict:
    return {
        'id': client.id,
        'client_code': client.client_code,
        'barcode': client.barcode,
        'full_name': client.full_name,
        'first_name': client.first_name,
        'last_name': client.last_name,
        'phone': client.phone,
        'email': client.email,
        'active': client.active,
        'is_active': client.is_active,
    }


@router.post('')
def create_client(
    payload: ClientCreate,
    request: Request,
    principal: Principal = Depends(require_role(*FRONT_DESK_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        client = register_client(
            db,
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
            email=payload.email,
            barcode=payload.barcode,
        )
    except ServiceError as exc:
        raise http_error(exc) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='CLIENT_REGISTERED',
        ip=get_client_ip(request),
        metadata={'client_code': client.client_code},
    )
    db.commit()
    return _client_payload(client)


@router.get('')
def clients(
    search: str | None = None,
    include_inactive: bool = False,
    _: Principal = Depends(require_role(*FRONT_DESK_ROLES, *POS_ROLES)),
    db: Session = Depends(get_db),
):
    return [_client_payload(client) for client in list_clients(db, include_inactive=include_inactive, search=search)]


@router.get('/{client_id}')
def client_detail(
    client_id: int,
    _: Principal = Depends(require_role(*FRONT_DESK_ROLES, *POS_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        return _client_payload(get_client(db, client_id=client_id))
    except ServiceError as exc:
        raise http_error(exc) from exc


@router.delete('/{client_id}')
def remove_client(
    client_id: int,
    request: Request,
    principal: Principal = Depends(require_role(Role.OPERATIONS_MANAGER, Role.COMMUNITY_MANAGER)),
    db: Session = Depends(get_db),
):
    try:
        client = deactivate_client(db, client_id=client_id, deactivated_by=principal.id)
    except ServiceError as exc:
        raise http_error(exc) from exc
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='CLIENT_DEACTIVATED',
        ip=get_client_ip(request),
        metadata={'client_id': client_id},
    )
    db.commit()
    return _client_payload(client)
