from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status

from spotin.models import PrincipalRole as Role

FRONT_DESK_ROLES = (Role.RECEPTIONIST, Role.COMMUNITY_MANAGER, Role.OPERATIONS_MANAGER, Role.ADMIN)
POS_ROLES = (Role.BARISTA, Role.RECEPTIONIST, Role.OPERATIONS_MANAGER, Role.ADMIN)
BACK_OFFICE_ROLES = (Role.OPERATIONS_MANAGER, Role.FINANCE_MANAGER, Role.CEO, Role.ADMIN)


@dataclass
class Principal:
    id: int
    username: str
    role: Role
    active: bool


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, 'principal', None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        # ADMIN can act for every role.
        if principal.role not in allowed and principal.role != Role.ADMIN:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep
