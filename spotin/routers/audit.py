from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from spotin.auth import BACK_OFFICE_ROLES, Principal, require_role
from spotin.db import get_db
from spotin.services.audit_service import recent_audit_entries

router = APIRouter(prefix='/audit', tags=['audit'])


@router.get('')
def audit_log(
    action: str | None = None,
    limit: int = 100,
    _: Principal = Depends(require_role(*BACK_OFFICE_ROLES)),
    db: Session = Depends(get_db),
):
    return recent_audit_entries(db, action=action, limit=max(1, min(limit, 500)))
