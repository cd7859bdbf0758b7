from pydantic import BaseModel, Field, PlainSerializer, field_validator
from typing import Annotated, Dict, Generic, List, Optional, TypeVar
from datetime import date, datetime
from decimal import Decimal

from evshare.models.upgrade import UpgradeType

# Money stays Decimal in Python and is rendered as a JSON number
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

T = TypeVar("T")


class UpgradeDetails(BaseModel):
    upgrade_type: UpgradeType
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=5000)
    estimated_cost: Decimal = Field(..., description="Estimated cost, must not be negative")
    justification: Optional[str] = Field(None, max_length=5000)
    image_url: Optional[str] = Field(None, max_length=500)
    vendor_name: Optional[str] = Field(None, max_length=200)
    vendor_contact: Optional[str] = Field(None, max_length=200)
    proposed_installation_date: Optional[date] = None
    estimated_duration_days: Optional[int] = Field(None, ge=1, le=365)

    @field_validator('title')
    def title_not_blank(cls, v):
        if not v.strip():
            raise ValueError('title must not be blank')
        return v.strip()


class ProposeUpgradeRequest(UpgradeDetails):
    vehicle_id: int


class VoteUpgradeRequest(BaseModel):
    approve: bool
    comments: Optional[str] = Field(None, max_length=2000)


class ExecuteUpgradeRequest(BaseModel):
    actual_cost: Decimal
    execution_notes: Optional[str] = Field(None, max_length=5000)
    invoice_image_url: Optional[str] = Field(None, max_length=500)


class VoteDetail(BaseModel):
    voter_id: int
    voter_name: str = "Unknown"
    voter_email: str = ""
    is_approve: bool
    comments: Optional[str] = None
    voted_at: datetime


class VoteTally(BaseModel):
    total_co_owners: int
    required_approvals: int
    current_approvals: int
    current_rejections: int
    approval_percentage: Money


class ProposalDetails(BaseModel):
    proposal_id: int
    vehicle_id: int
    vehicle_name: str = "Unknown"
    upgrade_type: UpgradeType
    title: str
    description: str
    justification: Optional[str] = None
    estimated_cost: Money
    image_url: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_contact: Optional[str] = None
    proposed_installation_date: Optional[date] = None
    estimated_duration_days: Optional[int] = None

    proposer_id: int
    proposer_name: str = "Unknown"
    created_at: datetime

    status: str
    tally: VoteTally
    is_approved: bool = False
    is_rejected: bool = False
    is_cancelled: bool = False
    is_executed: bool = False

    executed_at: Optional[datetime] = None
    actual_cost: Optional[Money] = None
    execution_notes: Optional[str] = None
    invoice_image_url: Optional[str] = None

    votes: List[VoteDetail] = Field(default_factory=list)


class PendingUpgradesSummary(BaseModel):
    vehicle_id: int
    vehicle_name: str
    total_pending_proposals: int
    total_pending_cost: Money
    proposals: List[ProposalDetails] = Field(default_factory=list)


class UserVotingHistory(BaseModel):
    user_id: int
    user_name: str
    total_proposals_created: int
    total_votes_cast: int
    approvals_given: int
    rejections_given: int
    pending_proposals: int
    proposal_history: List[ProposalDetails] = Field(default_factory=list)


class VehicleUpgradeStatistics(BaseModel):
    vehicle_id: int
    vehicle_name: str
    total_upgrades_completed: int
    total_upgrade_cost: Money
    pending_proposals: int
    rejected_proposals: int
    upgrades_by_type: Dict[str, int]
    recent_upgrades: List[ProposalDetails] = Field(default_factory=list)


class ApiResponse(BaseModel, Generic[T]):
    """Envelope returned by every upgrade/fund route."""
    status_code: int
    message: str
    data: Optional[T] = None
