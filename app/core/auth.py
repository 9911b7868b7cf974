"""
Caller identity for Lendflow API.

Wallet authentication happens in the session layer in front of this
service, which forwards the caller as headers:

- X-Account-Address: the caller's wallet address
- X-Account-Role: ADMIN, APPROVER, BORROWER or INVESTOR (default BORROWER)

Roles inherit downward: ADMIN covers APPROVER, APPROVER covers BORROWER.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, status

from app.services.transaction_ledger import AccessScope


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    APPROVER = "APPROVER"
    BORROWER = "BORROWER"
    INVESTOR = "INVESTOR"


ROLE_HIERARCHY = {
    Role.ADMIN: {Role.ADMIN, Role.APPROVER, Role.BORROWER, Role.INVESTOR},
    Role.APPROVER: {Role.APPROVER, Role.BORROWER},
    Role.INVESTOR: {Role.INVESTOR},
    Role.BORROWER: {Role.BORROWER},
}


def has_role(user_role: Role, required: Role) -> bool:
    return required in ROLE_HIERARCHY.get(user_role, set())


@dataclass(frozen=True)
class CallerSession:
    address: str  # lowercase
    role: Role = Role.BORROWER

    @property
    def is_privileged(self) -> bool:
        return has_role(self.role, Role.APPROVER)


def parse_role(raw: Optional[str]) -> Role:
    if not raw:
        return Role.BORROWER
    try:
        return Role(raw.strip().upper())
    except ValueError:
        return Role.BORROWER


async def get_caller(
    x_account_address: Optional[str] = Header(default=None),
    x_account_role: Optional[str] = Header(default=None),
) -> CallerSession:
    """Caller from session headers, or 401."""
    if not x_account_address or not x_account_address.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return CallerSession(
        address=x_account_address.strip().lower(),
        role=parse_role(x_account_role),
    )


def resolve_scope(caller: CallerSession, approver_requested: bool) -> AccessScope:
    """Reviewer scope for privileged sessions or ?approver=true, else owner scope."""
    if approver_requested or caller.is_privileged:
        return AccessScope.REVIEWER
    return AccessScope.OWNER
