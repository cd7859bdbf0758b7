from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from evshare.auth.rbac import Permission, Role, has_permission
from evshare.models.user import User
from evshare.models.vehicle import Vehicle, VehicleCoOwner
from evshare.services.exceptions import DatabaseQueryError


@dataclass(frozen=True)
class CoOwnerShare:
    co_owner_id: int
    ownership_percentage: Decimal


class CoOwnershipDirectory:
    """
    Answers who owns which share of a vehicle.

    A co-owner is a user holding a nonzero ownership percentage. Every
    lookup reads the current rows, so co-owners added or removed after a
    proposal was created count from the next evaluation on.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_vehicle(self, vehicle_id: int) -> Optional[Vehicle]:
        try:
            result = await self.db.execute(select(Vehicle).where(Vehicle.id == vehicle_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

    async def get_co_owners(self, vehicle_id: int) -> List[CoOwnerShare]:
        try:
            result = await self.db.execute(
                select(VehicleCoOwner.user_id, VehicleCoOwner.ownership_percentage)
                .where(
                    VehicleCoOwner.vehicle_id == vehicle_id,
                    VehicleCoOwner.ownership_percentage > 0,
                )
                .order_by(VehicleCoOwner.user_id)
            )
            return [
                CoOwnerShare(co_owner_id=row.user_id, ownership_percentage=row.ownership_percentage)
                for row in result.all()
            ]
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

    async def count_co_owners(self, vehicle_id: int) -> int:
        try:
            result = await self.db.execute(
                select(func.count(VehicleCoOwner.id)).where(
                    VehicleCoOwner.vehicle_id == vehicle_id,
                    VehicleCoOwner.ownership_percentage > 0,
                )
            )
            return result.scalar() or 0
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

    async def is_co_owner(self, vehicle_id: int, user_id: int) -> bool:
        try:
            result = await self.db.execute(
                select(func.count(VehicleCoOwner.id)).where(
                    VehicleCoOwner.vehicle_id == vehicle_id,
                    VehicleCoOwner.user_id == user_id,
                    VehicleCoOwner.ownership_percentage > 0,
                )
            )
            return (result.scalar() or 0) > 0
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))


class RoleChecker:
    """Reads the caller's role from the users table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: int) -> Optional[User]:
        try:
            result = await self.db.execute(select(User).where(User.id == user_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

    async def is_admin(self, user_id: int) -> bool:
        user = await self.get_user(user_id)
        return user is not None and user.role == Role.ADMIN.value

    async def can(self, user_id: int, permission: Permission) -> bool:
        user = await self.get_user(user_id)
        return user is not None and has_permission(user.role, permission)
