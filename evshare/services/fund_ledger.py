import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Type, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from evshare.core.clock import Clock
from evshare.core.metrics import track_performance
from evshare.models.fund import Fund, FundAddition, FundUsage
from evshare.models.upgrade import UpgradeType
from evshare.models.vehicle import Vehicle
from evshare.services.co_ownership import CoOwnershipDirectory
from evshare.services.exceptions import (
    DatabaseQueryError,
    FundNotFoundError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidCostError,
    NotCoOwnerError,
    UpgradeDomainError,
    VehicleNotFoundError,
)
from evshare.services.unit_of_work import unit_of_work
from evshare.services.validators import BusinessRules

logger = logging.getLogger(__name__)

Amount = Union[Decimal, int, float, str]

CENT = Decimal("0.01")

# Which ledger bucket an executed upgrade lands in
USAGE_TYPE_BY_UPGRADE = {
    UpgradeType.BATTERY_UPGRADE.value: "maintenance",
    UpgradeType.SAFETY_UPGRADE.value: "maintenance",
    UpgradeType.PERFORMANCE_UPGRADE.value: "maintenance",
    UpgradeType.INSURANCE_PACKAGE.value: "insurance",
}


def usage_type_for(upgrade_type: str) -> str:
    return USAGE_TYPE_BY_UPGRADE.get(upgrade_type, "other")


def to_money(value: Amount, error: Type[UpgradeDomainError] = InvalidCostError) -> Decimal:
    """
    Normalise any numeric input to a two-decimal Decimal.

    Input that is not a finite number, or too large to quantize, raises
    `error` instead of leaking decimal.InvalidOperation.
    """
    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            raise InvalidOperation
        return amount.quantize(CENT)
    except InvalidOperation:
        raise error(f"Not a valid monetary amount: {value}")


class FundLedger:
    """
    Per-vehicle shared fund.

    `debit` never commits: it flushes inside the caller's transaction so
    the debit and whatever caused it commit or roll back together. The fund
    row is locked with SELECT ... FOR UPDATE and the balance is re-checked
    after the lock, so two debits against the same fund are serialized.
    """

    def __init__(self, db: AsyncSession, directory: CoOwnershipDirectory = None, clock: Clock = None):
        self.db = db
        self.directory = directory or CoOwnershipDirectory(db)
        self.clock = clock or Clock()

    async def _get_fund(self, vehicle_id: int, lock: bool = False) -> Fund:
        try:
            vehicle = (
                await self.db.execute(select(Vehicle).where(Vehicle.id == vehicle_id))
            ).scalar_one_or_none()
            if not vehicle:
                raise VehicleNotFoundError()
            if vehicle.fund_id is None:
                raise FundNotFoundError()

            stmt = select(Fund).where(Fund.id == vehicle.fund_id)
            if lock:
                stmt = stmt.with_for_update()
            fund = (
                await self.db.execute(stmt.execution_options(populate_existing=True))
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

        if not fund:
            raise FundNotFoundError("Fund not found for this vehicle")
        return fund

    async def get_balance(self, vehicle_id: int) -> Decimal:
        fund = await self._get_fund(vehicle_id)
        return fund.current_balance

    async def debit(
        self,
        vehicle_id: int,
        amount: Amount,
        reference_id: Optional[int] = None,
        usage_type: str = "other",
        description: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> FundUsage:
        """
        Debits `amount` from the vehicle fund and records a usage entry.

        Must run inside an open unit of work; nothing is committed here.

        Raises:
            VehicleNotFoundError, FundNotFoundError, InsufficientFundsError
        """
        amount = to_money(amount)
        fund = await self._get_fund(vehicle_id, lock=True)

        # Re-validated under the lock
        if fund.current_balance < amount:
            raise InsufficientFundsError(
                f"Insufficient fund balance. Available: {fund.current_balance}, Required: {amount}"
            )

        usage = FundUsage(
            fund_id=fund.id,
            usage_type=usage_type,
            amount=amount,
            description=description,
            image_url=image_url,
            reference_id=reference_id,
            created_at=self.clock.now(),
        )
        fund.current_balance = fund.current_balance - amount
        fund.updated_at = self.clock.now()
        self.db.add(usage)
        await self.db.flush()

        logger.info(
            "Fund debited",
            extra={
                'vehicle_id': vehicle_id,
                'fund_id': fund.id,
                'amount': str(amount),
                'reference_id': reference_id,
                'balance_after': str(fund.current_balance),
            }
        )
        return usage

    @track_performance(service_name="FundLedger")
    async def deposit(self, vehicle_id: int, user_id: int, amount: Amount, note: Optional[str] = None) -> Dict:
        """Co-owner top-up. Commits its own unit of work."""
        amount = to_money(amount, InvalidAmountError)
        BusinessRules.validate_deposit_amount(amount)

        async with unit_of_work(self.db):
            fund = await self._get_fund(vehicle_id, lock=True)
            if not await self.directory.is_co_owner(vehicle_id, user_id):
                raise NotCoOwnerError("You must be a co-owner of this vehicle to deposit into its fund")
            if fund.current_balance + amount > BusinessRules.MAX_MONEY:
                raise InvalidAmountError("Deposit would exceed the maximum fund balance")

            addition = FundAddition(
                fund_id=fund.id,
                user_id=user_id,
                amount=amount,
                note=note,
                created_at=self.clock.now(),
            )
            fund.current_balance = fund.current_balance + amount
            fund.updated_at = self.clock.now()
            self.db.add(addition)
            await self.db.flush()
            balance = fund.current_balance
            addition_id = addition.id

        logger.info(
            "Fund deposit recorded",
            extra={'vehicle_id': vehicle_id, 'user_id': user_id, 'amount': str(amount)}
        )
        return {
            "vehicle_id": vehicle_id,
            "fund_addition_id": addition_id,
            "amount": amount,
            "current_balance": balance,
        }

    @track_performance(service_name="FundLedger")
    async def get_fund_summary(self, vehicle_id: int, user_id: int, limit: int = 10) -> Dict:
        """Balance plus the most recent usages and additions."""
        fund = await self._get_fund(vehicle_id)
        if not await self.directory.is_co_owner(vehicle_id, user_id):
            raise NotCoOwnerError("You must be a co-owner of this vehicle to view its fund")

        try:
            usages = (
                await self.db.execute(
                    select(FundUsage)
                    .where(FundUsage.fund_id == fund.id)
                    .order_by(FundUsage.created_at.desc(), FundUsage.id.desc())
                    .limit(limit)
                )
            ).scalars().all()
            additions = (
                await self.db.execute(
                    select(FundAddition)
                    .where(FundAddition.fund_id == fund.id)
                    .order_by(FundAddition.created_at.desc(), FundAddition.id.desc())
                    .limit(limit)
                )
            ).scalars().all()
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

        return {
            "vehicle_id": vehicle_id,
            "fund_id": fund.id,
            "current_balance": fund.current_balance,
            "recent_usages": [self._usage_dict(u) for u in usages],
            "recent_additions": [
                dict(
                    id=a.id,
                    user_id=a.user_id,
                    amount=a.amount,
                    note=a.note,
                    created_at=a.created_at,
                )
                for a in additions
            ],
        }

    @staticmethod
    def _usage_dict(usage: FundUsage) -> Dict:
        return dict(
            id=usage.id,
            usage_type=usage.usage_type,
            amount=usage.amount,
            description=usage.description,
            image_url=usage.image_url,
            reference_id=usage.reference_id,
            created_at=usage.created_at,
        )

    async def list_usages_for_reference(self, reference_id: int) -> List[Dict]:
        try:
            rows = (
                await self.db.execute(
                    select(FundUsage).where(FundUsage.reference_id == reference_id)
                )
            ).scalars().all()
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))
        return [self._usage_dict(u) for u in rows]
