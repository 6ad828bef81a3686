"""Caller identity and the role -> wallet owner type mapping."""

from pydantic import BaseModel

from app.core.exceptions import UnmappedRoleError
from app.models.owner_wallet import OwnerType

ROLES = ("clinic", "doctor", "doctorStaff", "staff", "agent", "admin")
OWNER_TYPES: tuple[OwnerType, ...] = ("clinic", "doctor")
TOPUP_ROLES = ("clinic", "doctor")

_OWNER_TYPE_BY_ROLE: dict[str, OwnerType] = {
    "doctor": "doctor",
    "doctorStaff": "doctor",
    "clinic": "clinic",
    "agent": "clinic",
    "staff": "clinic",
}


def owner_type_for_role(role: str) -> OwnerType:
    """Return the wallet owner type a role spends from. Admins and unknown roles have no wallet."""
    try:
        return _OWNER_TYPE_BY_ROLE[role]
    except KeyError:
        raise UnmappedRoleError(role) from None


class Principal(BaseModel):
    """Resolved caller, as issued by the auth service."""
    id: str
    role: str
    tenant_id: str | None = None  # clinic/doctor account a staff, agent or doctorStaff user acts for

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def owner_id(self) -> str:
        return self.tenant_id or self.id

    @property
    def owner_type(self) -> OwnerType:
        return owner_type_for_role(self.role)
