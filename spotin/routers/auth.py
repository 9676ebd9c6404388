from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from spotin.auth import Principal, get_current_principal
from spotin.config import settings
from spotin.db import get_db
from spotin.dependencies import get_client_ip, get_session_token
from spotin.models import Principal as PrincipalModel
from spotin.schemas import LoginRequest
from spotin.security.passwords import verify_password
from spotin.security.sessions import create_web_session, revoke_principal_sessions, revoke_web_session
from spotin.services.audit_service import log_audit, log_auth_event

router = APIRouter(prefix='/auth', tags=['auth'])

INVALID_CREDENTIALS = 'Invalid username or password'


def _reject(db: Session, *, username: str, reason: str, principal_id: int | None, ip, user_agent) -> None:
    log_auth_event(
        db,
        attempted_username=username,
        success=False,
        failure_reason=reason,
        principal_id=principal_id,
        ip=ip,
        user_agent=user_agent,
    )
    db.commit()
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)


@router.post('/login')
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    username = payload.username.strip().lower()
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    principal = db.execute(select(PrincipalModel).where(PrincipalModel.username == username)).scalar_one_or_none()
    if not principal:
        _reject(db, username=username, reason='UNKNOWN_USERNAME', principal_id=None, ip=ip, user_agent=user_agent)
    if not principal.active:
        _reject(db, username=username, reason='INACTIVE_PRINCIPAL', principal_id=principal.id, ip=ip, user_agent=user_agent)

    valid, updated_hash = verify_password(payload.password, principal.password_hash)
    if not valid:
        _reject(db, username=username, reason='BAD_PASSWORD', principal_id=principal.id, ip=ip, user_agent=user_agent)
    if updated_hash:
        principal.password_hash = updated_hash

    token = create_web_session(db, principal.id, ip=ip, user_agent=user_agent)
    log_auth_event(
        db,
        attempted_username=username,
        success=True,
        failure_reason=None,
        principal_id=principal.id,
        ip=ip,
        user_agent=user_agent,
    )
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='AUTH_LOGIN',
        ip=ip,
        metadata={'username': username},
    )
    db.commit()

    response = JSONResponse(
        {
            'access_token': token,
            'token_type': 'bearer',
            'expires_in': settings.session_ttl_minutes * 60,
            'principal': {'id': principal.id, 'username': principal.username, 'role': principal.role.value},
        }
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/logout')
def logout(request: Request, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    token = get_session_token(request)
    if token:
        revoke_web_session(db, token)

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='AUTH_LOGOUT',
        ip=get_client_ip(request),
        metadata={},
    )
    db.commit()

    response = JSONResponse({'success': True})
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.post('/logout-all')
def logout_everywhere(request: Request, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    revoked = revoke_principal_sessions(db, principal.id)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='AUTH_LOGOUT_ALL',
        ip=get_client_ip(request),
        metadata={'revoked_sessions': revoked},
    )
    db.commit()

    response = JSONResponse({'success': True, 'revoked_sessions': revoked})
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.get('/me')
def me(principal: Principal = Depends(get_current_principal)):
    return {'id': principal.id, 'username': principal.username, 'role': principal.role.value}
