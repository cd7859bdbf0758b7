from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from evshare.auth.auth_bearer import get_current_user_id
from evshare.core.db import get_db
from evshare.schemas.fund import DepositOut, DepositRequest, FundSummaryOut
from evshare.schemas.upgrade import ApiResponse
from evshare.services.fund_ledger import FundLedger


router = APIRouter(prefix="/funds", tags=["funds"])


@router.post(
    "/vehicle/{vehicle_id}/deposit",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[DepositOut],
)
async def deposit(
    vehicle_id: int,
    req: DepositRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    result = await FundLedger(db).deposit(vehicle_id=vehicle_id, user_id=user_id, amount=req.amount, note=req.note)
    return ApiResponse(
        status_code=status.HTTP_201_CREATED,
        message="Deposit recorded",
        data=DepositOut(**result),
    )


@router.get("/vehicle/{vehicle_id}", response_model=ApiResponse[FundSummaryOut])
async def fund_summary(
    vehicle_id: int,
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    summary = await FundLedger(db).get_fund_summary(vehicle_id=vehicle_id, user_id=user_id, limit=limit)
    return ApiResponse(
        status_code=status.HTTP_200_OK,
        message="Fund summary retrieved",
        data=FundSummaryOut(**summary),
    )
