"""
Seeds a local database with a shared vehicle and its co-owners.

Run from the repository root:
    python -m evshare.scripts.seed_data
"""
import asyncio
import logging
from decimal import Decimal

from evshare.auth.passwords_handler import hash_password_async
from evshare.auth.rbac import Role
from evshare.core.db import AsyncSessionLocal, init_db
from evshare.core.logging import setup_logging
from evshare.models import Fund, User, Vehicle, VehicleCoOwner

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD = "changeme123"

USERS = [
    ("alice@evshare.dev", "Alice Nguyen", Role.CO_OWNER, Decimal("40.00")),
    ("bob@evshare.dev", "Bob Tran", Role.CO_OWNER, Decimal("30.00")),
    ("carol@evshare.dev", "Carol Le", Role.CO_OWNER, Decimal("30.00")),
    ("admin@evshare.dev", "Fleet Admin", Role.ADMIN, None),
]


async def seed():
    await init_db()

    async with AsyncSessionLocal() as db:
        fund = Fund(current_balance=Decimal("5000.00"))
        db.add(fund)
        await db.flush()

        vehicle = Vehicle(
            name="Shared Model 3",
            brand="Tesla",
            model="Model 3",
            vin="5YJ3E1EA7KF000001",
            license_plate="51A-123.45",
            fund_id=fund.id,
        )
        db.add(vehicle)
        await db.flush()

        password = await hash_password_async(DEFAULT_PASSWORD)
        for email, fullname, role, share in USERS:
            user = User(email=email, fullname=fullname, password=password, role=role.value)
            db.add(user)
            await db.flush()
            if share is not None:
                db.add(VehicleCoOwner(vehicle_id=vehicle.id, user_id=user.id, ownership_percentage=share))

        await db.commit()
        logger.info("Seed data inserted", extra={'vehicle_id': vehicle.id, 'fund_id': fund.id})


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed())
