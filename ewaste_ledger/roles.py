"""
roles.py - Role-based access control.

Three actors use the tracking application; see ROLE_DESCRIPTIONS. Identity
is established upstream. In development, pass the X-Role header; a missing
or unrecognised header is treated as the least privileged role (user).

Admin rights are derived from the other two roles plus the admin-only
operations, so a new user or vendor operation is granted to admins too.
"""
from enum import Enum
from typing import Optional

from fastapi import Depends, Header, HTTPException


class Role(str, Enum):
    USER   = "user"
    VENDOR = "vendor"
    ADMIN  = "admin"


ROLE_DESCRIPTIONS: dict[Role, str] = {
    Role.USER:   "Submits e-waste items and checks their on-chain verification",
    Role.VENDOR: "Recycler; advances item status and reads vendor certifications",
    Role.ADMIN:  "Certifies vendors, reconciles records, retries anchoring, reads metrics",
}

_USER_OPS   = frozenset({"submit", "read_submission", "read_verification", "reanchor"})
_VENDOR_OPS = frozenset({"read_submission", "read_verification", "update_status",
                         "read_vendor"})
_ADMIN_ONLY = frozenset({"verify_vendor", "reconcile", "reanchor_all", "read_metrics"})

PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.USER:   _USER_OPS,
    Role.VENDOR: _VENDOR_OPS,
    Role.ADMIN:  _USER_OPS | _VENDOR_OPS | _ADMIN_ONLY,
}


def roles_allowed(operation: str) -> list[str]:
    return [r.value for r in Role if operation in PERMISSIONS[r]]


def get_role(x_role: Optional[str] = Header(default=None, alias="X-Role")) -> Role:
    """Role named by the X-Role header, falling back to user."""
    if not x_role:
        return Role.USER
    try:
        return Role(x_role.strip().lower())
    except ValueError:
        return Role.USER


def require(operation: str):
    """Dependency that admits only roles holding `operation`."""
    def _dep(role: Role = Depends(get_role)) -> Role:
        if operation in PERMISSIONS[role]:
            return role
        raise HTTPException(403, detail={
            "error": "access_denied",
            "operation": operation,
            "role": role.value,
            "allowed_roles": roles_allowed(operation),
        })
    return _dep


def describe_roles() -> dict[str, dict]:
    return {
        r.value: {"description": ROLE_DESCRIPTIONS[r], "operations": sorted(PERMISSIONS[r])}
        for r in Role
    }
