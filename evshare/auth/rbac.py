from enum import Enum
from typing import Set

class Permission(str, Enum):
    """All application permissions (fine-grained access control)"""

    # Co-owner permissions
    VIEW_UPGRADES = "view:upgrades"
    PROPOSE_UPGRADE = "propose:upgrade"
    VOTE_UPGRADE = "vote:upgrade"
    DEPOSIT_FUND = "deposit:fund"
    VIEW_FUND = "view:fund"

    # Elevated permissions
    EXECUTE_ANY_UPGRADE = "execute:any_upgrade"
    CANCEL_ANY_UPGRADE = "cancel:any_upgrade"
    VIEW_ANY_VEHICLE = "view:any_vehicle"


class Role(str, Enum):
    """Application roles (coarse-grained)"""
    CO_OWNER = "co_owner"
    STAFF = "staff"
    ADMIN = "admin"

# Permission matrix - what each role can do
ROLE_PERMISSIONS: dict[Role, Set[Permission]] = {
    Role.CO_OWNER: {
        Permission.VIEW_UPGRADES,
        Permission.PROPOSE_UPGRADE,
        Permission.VOTE_UPGRADE,  # Only on vehicles they co-own
        Permission.DEPOSIT_FUND,
        Permission.VIEW_FUND,
    },
    Role.STAFF: {
        Permission.VIEW_UPGRADES,
        Permission.VIEW_FUND,
        Permission.VIEW_ANY_VEHICLE,
    },
    Role.ADMIN: set(Permission),  # All permissions
}


def has_permission(role: str, permission: Permission) -> bool:
    try:
        return permission in ROLE_PERMISSIONS[Role(role)]
    except ValueError:
        return False
