from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from evshare.schemas.upgrade import Money


class DepositRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Amount added to the vehicle fund")
    note: Optional[str] = Field(None, max_length=500)


class DepositOut(BaseModel):
    vehicle_id: int
    fund_addition_id: int
    amount: Money
    current_balance: Money


class FundUsageOut(BaseModel):
    id: int
    usage_type: str
    amount: Money
    description: Optional[str] = None
    image_url: Optional[str] = None
    reference_id: Optional[int] = None
    created_at: datetime


class FundAdditionOut(BaseModel):
    id: int
    user_id: int
    amount: Money
    note: Optional[str] = None
    created_at: datetime


class FundSummaryOut(BaseModel):
    vehicle_id: int
    fund_id: int
    current_balance: Money
    recent_usages: List[FundUsageOut] = Field(default_factory=list)
    recent_additions: List[FundAdditionOut] = Field(default_factory=list)
