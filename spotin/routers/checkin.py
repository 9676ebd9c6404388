from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from spotin.auth import FRONT_DESK_ROLES, Principal, require_role
from spotin.db import get_db
from spotin.dependencies import get_client_ip
from spotin.schemas import CheckinCheckoutRequest, ToggleCheckinRpcRequest
from spotin.services.audit_service import log_audit
from spotin.services.checkin_service import (
    list_active_sessions,
    list_checkin_history,
    manual_check_in,
    manual_check_out,
    toggle_checkin_status,
)
from spotin.services.errors import NotFoundError, RemoteError, ServiceError

logger = logging.getLogger(__name__)

router = APIRouter(tags=['checkin'])

STATUS_UPDATE_FAILED = 'Failed to update client status. Please try again.'


def _failure(error: str, status_code: int, details: str | None = None) -> JSONResponse:
    body = {'success': False, 'error': error}
    if details:
        body['details'] = details
    return JSONResponse(body, status_code=status_code)


@router.post('/rest/v1/rpc/toggle_client_checkin_status')
def toggle_client_checkin_status_rpc(
    payload: ToggleCheckinRpcRequest,
    principal: Principal = Depends(require_role(*FRONT_DESK_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        result = toggle_checkin_status(
            db,
            barcode=payload.p_barcode,
            scanned_by_user_id=payload.p_scanned_by_user_id or principal.id,
        )
    except NotFoundError as exc:
        return {'success': False, 'error': str(exc)}
    except RemoteError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return result.as_payload()


@router.post('/functions/v1/checkin-checkout')
def checkin_checkout(
    payload: CheckinCheckoutRequest,
    request: Request,
    principal: Principal = Depends(require_role(*FRONT_DESK_ROLES)),
    db: Session = Depends(get_db),
):
    actor_id = payload.scanned_by_user_id or principal.id
    logger.info(
        'Check-in/out request: barcode=%r action=%s client_id=%s actor=%s',
        payload.barcode,
        payload.action,
        payload.client_id,
        actor_id,
    )
    try:
        if payload.action == 'checkout' and payload.client_id is not None:
            result = manual_check_out(db, client_id=payload.client_id, checked_out_by=actor_id)
        elif payload.action == 'checkin' and payload.client_id is not None:
            result = manual_check_in(db, client_id=payload.client_id, checked_in_by=actor_id)
        else:
            result = toggle_checkin_status(db, barcode=payload.barcode, scanned_by_user_id=actor_id)
    except RemoteError as exc:
        return _failure(STATUS_UPDATE_FAILED, 400, details=str(exc))
    except ServiceError as exc:
        return _failure(str(exc), 400)
    except Exception as exc:
        logger.exception('Check-in/out error')
        return _failure('Internal server error', 500, details=str(exc))

    if payload.client_id is not None and payload.action:
        log_audit(
            db,
            actor_principal_id=principal.id,
            action=f'MANUAL_{result.action.value.upper()}',
            ip=get_client_ip(request),
            metadata={'client_id': result.client.id},
        )
        db.commit()
    return result.as_payload()


@router.get('/checkins/active')
def active_sessions(
    _: Principal = Depends(require_role(*FRONT_DESK_ROLES)),
    db: Session = Depends(get_db),
):
    return list_active_sessions(db)


@router.get('/clients/{client_id}/checkins')
def client_checkins(
    client_id: int,
    limit: int = 50,
    _: Principal = Depends(require_role(*FRONT_DESK_ROLES)),
    db: Session = Depends(get_db),
):
    records = list_checkin_history(db, client_id=client_id, limit=max(1, min(limit, 500)))
    return [
        {
            'id': record.id,
            'status': record.status.value,
            'checked_in_at': record.checked_in_at,
            'checked_out_at': record.checked_out_at,
            'user_id': record.user_id,
        }
        for record in records
    ]
