from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from evshare.auth.auth_bearer import get_current_user_id
from evshare.core.db import get_db
from evshare.schemas.upgrade import (
    ApiResponse,
    ExecuteUpgradeRequest,
    PendingUpgradesSummary,
    ProposalDetails,
    ProposeUpgradeRequest,
    UserVotingHistory,
    VehicleUpgradeStatistics,
    VoteUpgradeRequest,
)
from evshare.services.upgrade_engine import UpgradeProposalEngine


router = APIRouter(prefix="/upgrade-vote", tags=["upgrades"])


@router.post(
    "/propose",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[ProposalDetails],
)
async def propose_upgrade(
    req: ProposeUpgradeRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    engine = UpgradeProposalEngine(db)
    details = await engine.propose(vehicle_id=req.vehicle_id, proposer_id=user_id, details=req)
    return ApiResponse(
        status_code=status.HTTP_201_CREATED,
        message="Upgrade proposal created successfully",
        data=details,
    )


@router.get("/my-history", response_model=ApiResponse[UserVotingHistory])
async def my_voting_history(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    history = await UpgradeProposalEngine(db).get_user_voting_history(user_id=user_id)
    return ApiResponse(status_code=status.HTTP_200_OK, message="Voting history retrieved", data=history)


@router.get("/vehicle/{vehicle_id}/pending", response_model=ApiResponse[PendingUpgradesSummary])
async def pending_upgrades(
    vehicle_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    summary = await UpgradeProposalEngine(db).get_pending_upgrades_for_vehicle(
        vehicle_id=vehicle_id, user_id=user_id
    )
    return ApiResponse(status_code=status.HTTP_200_OK, message="Pending upgrades retrieved", data=summary)


@router.get("/vehicle/{vehicle_id}/statistics", response_model=ApiResponse[VehicleUpgradeStatistics])
async def vehicle_statistics(
    vehicle_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    stats = await UpgradeProposalEngine(db).get_vehicle_statistics(vehicle_id=vehicle_id, user_id=user_id)
    return ApiResponse(status_code=status.HTTP_200_OK, message="Upgrade statistics retrieved", data=stats)


@router.get("/{proposal_id}", response_model=ApiResponse[ProposalDetails])
async def proposal_details(
    proposal_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    details = await UpgradeProposalEngine(db).get_proposal_details(proposal_id=proposal_id, user_id=user_id)
    return ApiResponse(status_code=status.HTTP_200_OK, message="Proposal retrieved", data=details)


@router.post("/{proposal_id}/vote", response_model=ApiResponse[ProposalDetails])
async def vote_on_upgrade(
    proposal_id: int,
    req: VoteUpgradeRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    details = await UpgradeProposalEngine(db).vote(
        proposal_id=proposal_id,
        voter_id=user_id,
        is_approve=req.approve,
        comments=req.comments,
    )
    return ApiResponse(status_code=status.HTTP_200_OK, message="Vote recorded successfully", data=details)


@router.post("/{proposal_id}/execute", response_model=ApiResponse[ProposalDetails])
async def execute_upgrade(
    proposal_id: int,
    req: ExecuteUpgradeRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    details = await UpgradeProposalEngine(db).execute(
        proposal_id=proposal_id,
        actor_id=user_id,
        actual_cost=req.actual_cost,
        execution_notes=req.execution_notes,
        invoice_image_url=req.invoice_image_url,
    )
    return ApiResponse(status_code=status.HTTP_200_OK, message="Upgrade marked as executed", data=details)


@router.delete("/{proposal_id}/cancel", response_model=ApiResponse[ProposalDetails])
async def cancel_upgrade(
    proposal_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    details = await UpgradeProposalEngine(db).cancel(proposal_id=proposal_id, actor_id=user_id)
    return ApiResponse(status_code=status.HTTP_200_OK, message="Upgrade proposal cancelled", data=details)
