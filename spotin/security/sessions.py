from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select

from spotin.auth import Principal, Role
from spotin.config import settings
from spotin.db import SessionLocal
from spotin.dependencies import get_session_token
from spotin.models import Principal as PrincipalModel
from spotin.models import WebSession

logger = logging.getLogger(__name__)

AUTH_EXEMPT_PATHS = {'/auth/login', '/health', '/docs', '/openapi.json'}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def create_web_session(db, principal_id: int, ip: str | None, user_agent: str | None) -> str:
    token = secrets.token_urlsafe(48)
    web_session = WebSession(
        session_token=token,
        principal_id=principal_id,
        ip=ip,
        user_agent=user_agent,
        expires_at=_session_expiry(),
    )
    db.add(web_session)
    db.flush()
    return token


def revoke_web_session(db, token: str) -> bool:
    session = db.execute(select(WebSession).where(WebSession.session_token == token)).scalar_one_or_none()
    if not session or session.revoked_at is not None:
        return False
    session.revoked_at = _now()
    return True


def revoke_principal_sessions(db, principal_id: int) -> int:
    sessions = db.execute(
        select(WebSession).where(WebSession.principal_id == principal_id, WebSession.revoked_at.is_(None))
    ).scalars().all()
    now = _now()
    for session in sessions:
        session.revoked_at = now
    return len(sessions)


def load_principal_from_token(db, token: str | None) -> Principal | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, PrincipalModel)
        .join(PrincipalModel, PrincipalModel.id == WebSession.principal_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, principal = row
    now = _now()
    if web_session.revoked_at is not None or _as_utc(web_session.expires_at) <= now:
        return None

    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry()
    return Principal(
        id=principal.id,
        username=principal.username,
        role=Role(principal.role),
        active=principal.active,
    )


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        request.state.principal = None
        if request.method == 'OPTIONS' or request.url.path in AUTH_EXEMPT_PATHS:
            return await call_next(request)

        with SessionLocal() as db:
            principal = load_principal_from_token(db, get_session_token(request))
            request.state.principal = principal
            db.commit()

        if principal is None:
            logger.debug('Rejected unauthenticated %s %s', request.method, request.url.path)
            return JSONResponse({'detail': 'Not authenticated'}, status_code=401)

        return await call_next(request)
