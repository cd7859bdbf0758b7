import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import case, select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from evshare.auth.rbac import Permission
from evshare.core.clock import Clock
from evshare.core.metrics import track_performance
from evshare.core.prometheus_metrics import prometheus_collector
from evshare.core.retry import async_retry
from evshare.models.upgrade import (
    TERMINAL_STATUSES,
    ProposalStatus,
    UpgradeProposal,
    UpgradeType,
    UpgradeVote,
)
from evshare.models.user import User
from evshare.models.vehicle import Vehicle
from evshare.schemas.upgrade import (
    PendingUpgradesSummary,
    ProposalDetails,
    UpgradeDetails,
    UserVotingHistory,
    VehicleUpgradeStatistics,
    VoteDetail,
    VoteTally,
)
from evshare.services.co_ownership import CoOwnershipDirectory, RoleChecker
from evshare.services.exceptions import (
    AlreadyExecutedError,
    AlreadyVotedError,
    DatabaseQueryError,
    NotApprovedError,
    NotAuthorizedError,
    NotCancellableError,
    NotCoOwnerError,
    ProposalNotFoundError,
    UserNotFoundError,
    VehicleNotFoundError,
    VotingClosedError,
)
from evshare.services.fund_ledger import FundLedger, to_money, usage_type_for
from evshare.services.unit_of_work import unit_of_work
from evshare.services.validators import BusinessRules

logger = logging.getLogger(__name__)

AUTO_APPROVE_COMMENT = "Auto-approved as proposer"
RECENT_UPGRADES_LIMIT = 10


def required_approvals(total_co_owners: int) -> int:
    """Smallest approve count strictly above half of the co-owners."""
    return total_co_owners // 2 + 1


def decide_status(approvals: int, rejections: int, total_co_owners: int) -> ProposalStatus:
    """
    Decision rule for a Pending proposal.

    1. Any rejection vetoes the proposal.
    2. Otherwise approvals strictly greater than half of the current
       co-owner count approve it (2 of 4 is not enough, 2 of 3 is).
    3. Otherwise it stays Pending.
    """
    if rejections > 0:
        return ProposalStatus.REJECTED
    if total_co_owners > 0 and approvals * 2 > total_co_owners:
        return ProposalStatus.APPROVED
    return ProposalStatus.PENDING


def _full_name(user: Optional[User]) -> str:
    return user.fullname.strip() if user and user.fullname else "Unknown"


class UpgradeProposalEngine:
    """
    Owns the vehicle-upgrade proposal lifecycle.

    Pending -> Approved | Rejected | Cancelled
    Approved -> Executed | Cancelled
    Rejected, Cancelled and Executed are terminal.

    Every mutation is a single unit of work on the injected session:
    - the proposal row is locked with SELECT ... FOR UPDATE and carries an
      optimistic version counter, so concurrent votes commit exactly one
      decision transition and the loser is replayed against fresh state
    - execute debits the vehicle fund inside the same transaction as the
      status change; any failure rolls both back
    - authorization and validation run before any write

    Errors are raised as UpgradeDomainError subclasses carrying the HTTP
    status the transport layer should use.
    """

    def __init__(
        self,
        db: AsyncSession,
        directory: CoOwnershipDirectory = None,
        ledger: FundLedger = None,
        clock: Clock = None,
        roles: RoleChecker = None,
    ):
        self.db = db
        self.clock = clock or Clock()
        self.directory = directory or CoOwnershipDirectory(db)
        self.ledger = ledger or FundLedger(db, directory=self.directory, clock=self.clock)
        self.roles = roles or RoleChecker(db)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @track_performance(service_name="UpgradeProposalEngine", include_metadata=True)
    @async_retry(max_attempts=3)
    async def propose(self, vehicle_id: int, proposer_id: int, details: UpgradeDetails) -> ProposalDetails:
        """
        Creates a Pending proposal together with the proposer's approve vote.

        The decision rule runs once after the implicit vote, so a vehicle
        with a single co-owner gets an Approved proposal straight away.

        Raises:
            VehicleNotFoundError: unknown vehicle
            NotCoOwnerError: proposer holds no share of the vehicle
            InvalidCostError: negative, non-numeric or oversized estimated cost
        """
        async with unit_of_work(self.db):
            vehicle = await self.directory.get_vehicle(vehicle_id)
            if not vehicle:
                raise VehicleNotFoundError()

            if not await self.directory.is_co_owner(vehicle_id, proposer_id):
                raise NotCoOwnerError("You must be a co-owner of this vehicle to propose upgrades")

            estimated_cost = to_money(details.estimated_cost)
            BusinessRules.validate_estimated_cost(estimated_cost)

            now = self.clock.now()
            proposal = UpgradeProposal(
                vehicle_id=vehicle_id,
                proposer_id=proposer_id,
                upgrade_type=UpgradeType(details.upgrade_type).value,
                title=details.title,
                description=details.description or "",
                justification=details.justification,
                estimated_cost=estimated_cost,
                vendor_name=details.vendor_name,
                vendor_contact=details.vendor_contact,
                image_url=details.image_url,
                proposed_installation_date=details.proposed_installation_date,
                estimated_duration_days=details.estimated_duration_days,
                status=ProposalStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            self.db.add(proposal)
            await self.db.flush()

            self.db.add(UpgradeVote(
                proposal_id=proposal.id,
                voter_id=proposer_id,
                is_approve=True,
                comments=AUTO_APPROVE_COMMENT,
                voted_at=now,
            ))
            await self.db.flush()

            new_status = await self._apply_decision_rule(proposal, now)
            proposal_id = proposal.id

        logger.info(
            "Upgrade proposal created",
            extra={
                'proposal_id': proposal_id,
                'vehicle_id': vehicle_id,
                'proposer_id': proposer_id,
                'estimated_cost': str(estimated_cost),
                'status': new_status.value,
            }
        )
        prometheus_collector.record_vote(True)
        prometheus_collector.record_transition(ProposalStatus.PENDING.value)
        if new_status != ProposalStatus.PENDING:
            prometheus_collector.record_transition(new_status.value)

        return await self._build_details(proposal_id)

    @track_performance(service_name="UpgradeProposalEngine", include_metadata=True)
    @async_retry(max_attempts=3)
    async def vote(
        self,
        proposal_id: int,
        voter_id: int,
        is_approve: bool,
        comments: Optional[str] = None,
    ) -> ProposalDetails:
        """
        Records one co-owner vote and re-evaluates the decision rule.

        Raises:
            ProposalNotFoundError: unknown proposal
            VotingClosedError: proposal is no longer Pending
            NotCoOwnerError: voter holds no share of the vehicle
            AlreadyVotedError: voter already has a vote on this proposal
        """
        async with unit_of_work(self.db):
            proposal = await self._get_proposal(proposal_id, lock=True)

            if proposal.status != ProposalStatus.PENDING.value:
                raise VotingClosedError(f"Cannot vote on proposal with status: {proposal.status}")

            if not await self.directory.is_co_owner(proposal.vehicle_id, voter_id):
                raise NotCoOwnerError("You must be a co-owner of this vehicle to vote on upgrades")

            existing = await self._get_vote(proposal_id, voter_id)
            if existing:
                raise AlreadyVotedError()

            now = self.clock.now()
            self.db.add(UpgradeVote(
                proposal_id=proposal_id,
                voter_id=voter_id,
                is_approve=is_approve,
                comments=comments,
                voted_at=now,
            ))
            try:
                await self.db.flush()
            except IntegrityError:
                # Same voter raced us past the existence check
                raise AlreadyVotedError()

            new_status = await self._apply_decision_rule(proposal, now)

        logger.info(
            "Upgrade vote recorded",
            extra={
                'proposal_id': proposal_id,
                'voter_id': voter_id,
                'is_approve': is_approve,
                'status': new_status.value,
            }
        )
        prometheus_collector.record_vote(is_approve)
        if new_status != ProposalStatus.PENDING:
            prometheus_collector.record_transition(new_status.value)

        return await self._build_details(proposal_id)

    @track_performance(service_name="UpgradeProposalEngine", include_metadata=True)
    @async_retry(max_attempts=3)
    async def execute(
        self,
        proposal_id: int,
        actor_id: int,
        actual_cost,
        execution_notes: Optional[str] = None,
        invoice_image_url: Optional[str] = None,
    ) -> ProposalDetails:
        """
        Marks an Approved proposal as Executed and pays for it from the fund.

        The fund debit, the usage record and the status change commit as
        one transaction. If the fund cannot cover `actual_cost` once its row
        is locked, nothing is written.

        Raises:
            ProposalNotFoundError, NotAuthorizedError, AlreadyExecutedError,
            NotApprovedError, InvalidCostError, FundNotFoundError,
            InsufficientFundsError
        """
        async with unit_of_work(self.db):
            proposal = await self._get_proposal(proposal_id, lock=True)
            await self._ensure_proposer_or_admin(
                proposal, actor_id, "Only admins or the proposer can mark upgrades as executed"
            )

            if proposal.status == ProposalStatus.EXECUTED.value:
                raise AlreadyExecutedError()
            if proposal.status != ProposalStatus.APPROVED.value:
                raise NotApprovedError(
                    f"Only approved proposals can be marked as executed (status: {proposal.status})"
                )
            actual_cost = to_money(actual_cost)
            BusinessRules.validate_actual_cost(actual_cost)

            usage = await self.ledger.debit(
                proposal.vehicle_id,
                actual_cost,
                reference_id=proposal.id,
                usage_type=usage_type_for(proposal.upgrade_type),
                description=f"Upgrade: {proposal.title}",
                image_url=invoice_image_url,
            )

            now = self.clock.now()
            proposal.status = ProposalStatus.EXECUTED.value
            proposal.actual_cost = actual_cost
            proposal.execution_notes = execution_notes
            proposal.invoice_image_url = invoice_image_url
            proposal.executed_at = now
            proposal.fund_usage_id = usage.id
            proposal.updated_at = now
            await self.db.flush()
            vehicle_id = proposal.vehicle_id

        logger.info(
            "Upgrade executed",
            extra={
                'proposal_id': proposal_id,
                'vehicle_id': vehicle_id,
                'actor_id': actor_id,
                'actual_cost': str(actual_cost),
            }
        )
        prometheus_collector.record_transition(ProposalStatus.EXECUTED.value)
        prometheus_collector.record_fund_debit(float(actual_cost))

        return await self._build_details(proposal_id)

    @track_performance(service_name="UpgradeProposalEngine", include_metadata=True)
    @async_retry(max_attempts=3)
    async def cancel(self, proposal_id: int, actor_id: int) -> ProposalDetails:
        """
        Cancels a Pending or Approved proposal. No money moves: funds are
        only ever debited by execute.

        Raises:
            ProposalNotFoundError, NotAuthorizedError, NotCancellableError
        """
        async with unit_of_work(self.db):
            proposal = await self._get_proposal(proposal_id, lock=True)
            await self._ensure_proposer_or_admin(
                proposal, actor_id, "Only admins or the proposer can cancel this proposal"
            )

            if proposal.status in TERMINAL_STATUSES:
                raise NotCancellableError(f"Cannot cancel proposal with status: {proposal.status}")

            now = self.clock.now()
            proposal.status = ProposalStatus.CANCELLED.value
            proposal.cancelled_at = now
            proposal.updated_at = now
            await self.db.flush()

        logger.info(
            "Upgrade proposal cancelled",
            extra={'proposal_id': proposal_id, 'actor_id': actor_id}
        )
        prometheus_collector.record_transition(ProposalStatus.CANCELLED.value)

        return await self._build_details(proposal_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @track_performance(service_name="UpgradeProposalEngine")
    async def get_proposal_details(self, proposal_id: int, user_id: int) -> ProposalDetails:
        proposal = await self._get_proposal(proposal_id)
        await self._ensure_can_view(
            proposal.vehicle_id, user_id, "You must be a co-owner of this vehicle to view this proposal"
        )
        return await self._build_details(proposal.id)

    @track_performance(service_name="UpgradeProposalEngine")
    async def get_pending_upgrades_for_vehicle(self, vehicle_id: int, user_id: int) -> PendingUpgradesSummary:
        vehicle = await self.directory.get_vehicle(vehicle_id)
        if not vehicle:
            raise VehicleNotFoundError()
        await self._ensure_can_view(
            vehicle_id, user_id, "You must be a co-owner of this vehicle to view upgrade proposals"
        )

        pending = await self._list_proposals(
            UpgradeProposal.vehicle_id == vehicle_id,
            UpgradeProposal.status == ProposalStatus.PENDING.value,
        )
        total_co_owners = await self.directory.count_co_owners(vehicle_id)
        proposals = [
            await self._build_details(p.id, vehicle=vehicle, total_co_owners=total_co_owners)
            for p in pending
        ]
        prometheus_collector.update_pending_proposals(vehicle_id, len(proposals))

        return PendingUpgradesSummary(
            vehicle_id=vehicle_id,
            vehicle_name=vehicle.name,
            total_pending_proposals=len(proposals),
            total_pending_cost=sum((p.estimated_cost for p in proposals), Decimal("0")),
            proposals=proposals,
        )

    @track_performance(service_name="UpgradeProposalEngine")
    async def get_user_voting_history(self, user_id: int) -> UserVotingHistory:
        user = await self.roles.get_user(user_id)
        if not user:
            raise UserNotFoundError()

        created = await self._list_proposals(UpgradeProposal.proposer_id == user_id)

        try:
            row = (
                await self.db.execute(
                    select(
                        func.count().label("votes_cast"),
                        func.coalesce(
                            func.sum(case((UpgradeVote.is_approve.is_(True), 1), else_=0)), 0
                        ).label("approvals"),
                    ).where(UpgradeVote.voter_id == user_id)
                )
            ).one()
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

        votes_cast = row.votes_cast or 0
        approvals = int(row.approvals or 0)

        return UserVotingHistory(
            user_id=user_id,
            user_name=_full_name(user),
            total_proposals_created=len(created),
            total_votes_cast=votes_cast,
            approvals_given=approvals,
            rejections_given=votes_cast - approvals,
            pending_proposals=sum(1 for p in created if p.status == ProposalStatus.PENDING.value),
            proposal_history=[
                await self._build_details(p.id, include_votes=False) for p in created
            ],
        )

    @track_performance(service_name="UpgradeProposalEngine")
    async def get_vehicle_statistics(self, vehicle_id: int, user_id: int) -> VehicleUpgradeStatistics:
        vehicle = await self.directory.get_vehicle(vehicle_id)
        if not vehicle:
            raise VehicleNotFoundError()
        await self._ensure_can_view(
            vehicle_id, user_id, "You must be a co-owner of this vehicle to view upgrade statistics"
        )

        proposals = await self._list_proposals(UpgradeProposal.vehicle_id == vehicle_id)
        executed = [p for p in proposals if p.status == ProposalStatus.EXECUTED.value]

        upgrades_by_type: Dict[str, int] = {t.value: 0 for t in UpgradeType}
        for p in executed:
            upgrades_by_type[p.upgrade_type] = upgrades_by_type.get(p.upgrade_type, 0) + 1

        recent = await self._list_proposals(
            UpgradeProposal.vehicle_id == vehicle_id,
            UpgradeProposal.status == ProposalStatus.EXECUTED.value,
            order_by=(UpgradeProposal.executed_at.desc(), UpgradeProposal.id.desc()),
            limit=RECENT_UPGRADES_LIMIT,
        )
        total_co_owners = await self.directory.count_co_owners(vehicle_id)

        return VehicleUpgradeStatistics(
            vehicle_id=vehicle_id,
            vehicle_name=vehicle.name,
            total_upgrades_completed=len(executed),
            total_upgrade_cost=sum((p.actual_cost or Decimal("0") for p in executed), Decimal("0")),
            pending_proposals=sum(1 for p in proposals if p.status == ProposalStatus.PENDING.value),
            rejected_proposals=sum(1 for p in proposals if p.status == ProposalStatus.REJECTED.value),
            upgrades_by_type=upgrades_by_type,
            recent_upgrades=[
                await self._build_details(
                    p.id, vehicle=vehicle, total_co_owners=total_co_owners, include_votes=False
                )
                for p in recent
            ],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_proposal(self, proposal_id: int, lock: bool = False) -> UpgradeProposal:
        stmt = select(UpgradeProposal).where(UpgradeProposal.id == proposal_id)
        if lock:
            stmt = stmt.with_for_update()
        try:
            proposal = (
                await self.db.execute(stmt.execution_options(populate_existing=True))
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

        if not proposal:
            raise ProposalNotFoundError()
        return proposal

    async def _get_vote(self, proposal_id: int, voter_id: int) -> Optional[UpgradeVote]:
        try:
            result = await self.db.execute(
                select(UpgradeVote).where(
                    UpgradeVote.proposal_id == proposal_id,
                    UpgradeVote.voter_id == voter_id,
                )
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

    async def _count_votes(self, proposal_id: int) -> Tuple[int, int]:
        try:
            rows = (
                await self.db.execute(
                    select(UpgradeVote.is_approve, func.count())
                    .where(UpgradeVote.proposal_id == proposal_id)
                    .group_by(UpgradeVote.is_approve)
                )
            ).all()
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

        counts = {bool(is_approve): n for is_approve, n in rows}
        return counts.get(True, 0), counts.get(False, 0)

    async def _list_proposals(self, *criteria, order_by=None, limit: Optional[int] = None) -> List[UpgradeProposal]:
        stmt = (
            select(UpgradeProposal)
            .where(*criteria)
            .order_by(*(order_by or (UpgradeProposal.created_at.desc(), UpgradeProposal.id.desc())))
        )
        if limit:
            stmt = stmt.limit(limit)
        try:
            result = await self.db.execute(stmt.execution_options(populate_existing=True))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

    async def _apply_decision_rule(self, proposal: UpgradeProposal, now: datetime) -> ProposalStatus:
        """Evaluates the rule against the current co-owner set and applies any transition."""
        approvals, rejections = await self._count_votes(proposal.id)
        total_co_owners = await self.directory.count_co_owners(proposal.vehicle_id)
        decision = decide_status(approvals, rejections, total_co_owners)

        if decision == ProposalStatus.APPROVED:
            proposal.status = decision.value
            proposal.approved_at = now
            proposal.updated_at = now
        elif decision == ProposalStatus.REJECTED:
            proposal.status = decision.value
            proposal.rejected_at = now
            proposal.updated_at = now

        if decision != ProposalStatus.PENDING:
            # Bumps the version; a concurrent decision on the same row loses here
            await self.db.flush()
            logger.info(
                "Upgrade proposal decided",
                extra={
                    'proposal_id': proposal.id,
                    'status': decision.value,
                    'approvals': approvals,
                    'rejections': rejections,
                    'total_co_owners': total_co_owners,
                }
            )
        return decision

    async def _ensure_proposer_or_admin(self, proposal: UpgradeProposal, actor_id: int, message: str):
        if proposal.proposer_id == actor_id:
            return
        if await self.roles.is_admin(actor_id):
            return
        raise NotAuthorizedError(message)

    async def _ensure_can_view(self, vehicle_id: int, user_id: int, message: str):
        if await self.directory.is_co_owner(vehicle_id, user_id):
            return
        if await self.roles.can(user_id, Permission.VIEW_ANY_VEHICLE):
            return
        raise NotCoOwnerError(message)

    async def _build_details(
        self,
        proposal_id: int,
        vehicle: Optional[Vehicle] = None,
        total_co_owners: Optional[int] = None,
        include_votes: bool = True,
    ) -> ProposalDetails:
        proposal = await self._get_proposal(proposal_id)
        if vehicle is None:
            vehicle = await self.directory.get_vehicle(proposal.vehicle_id)
        if total_co_owners is None:
            total_co_owners = await self.directory.count_co_owners(proposal.vehicle_id)

        proposer = await self.roles.get_user(proposal.proposer_id)
        approvals, rejections = await self._count_votes(proposal.id)

        votes: List[VoteDetail] = []
        if include_votes:
            try:
                rows = (
                    await self.db.execute(
                        select(UpgradeVote, User)
                        .outerjoin(User, User.id == UpgradeVote.voter_id)
                        .where(UpgradeVote.proposal_id == proposal.id)
                        .order_by(UpgradeVote.voted_at.desc(), UpgradeVote.voter_id)
                    )
                ).all()
            except SQLAlchemyError as e:
                raise DatabaseQueryError(str(e))

            votes = [
                VoteDetail(
                    voter_id=vote.voter_id,
                    voter_name=_full_name(user),
                    voter_email=user.email if user else "",
                    is_approve=vote.is_approve,
                    comments=vote.comments,
                    voted_at=vote.voted_at,
                )
                for vote, user in rows
            ]

        approval_percentage = (
            (Decimal(approvals) / Decimal(total_co_owners) * 100).quantize(Decimal("0.01"))
            if total_co_owners > 0 else Decimal("0")
        )

        return ProposalDetails(
            proposal_id=proposal.id,
            vehicle_id=proposal.vehicle_id,
            vehicle_name=vehicle.name if vehicle else "Unknown",
            upgrade_type=proposal.upgrade_type,
            title=proposal.title,
            description=proposal.description or "",
            justification=proposal.justification,
            estimated_cost=proposal.estimated_cost,
            image_url=proposal.image_url,
            vendor_name=proposal.vendor_name,
            vendor_contact=proposal.vendor_contact,
            proposed_installation_date=proposal.proposed_installation_date,
            estimated_duration_days=proposal.estimated_duration_days,
            proposer_id=proposal.proposer_id,
            proposer_name=_full_name(proposer),
            created_at=proposal.created_at,
            status=proposal.status,
            tally=VoteTally(
                total_co_owners=total_co_owners,
                required_approvals=required_approvals(total_co_owners),
                current_approvals=approvals,
                current_rejections=rejections,
                approval_percentage=approval_percentage,
            ),
            is_approved=proposal.status == ProposalStatus.APPROVED.value,
            is_rejected=proposal.status == ProposalStatus.REJECTED.value,
            is_cancelled=proposal.status == ProposalStatus.CANCELLED.value,
            is_executed=proposal.status == ProposalStatus.EXECUTED.value,
            executed_at=proposal.executed_at,
            actual_cost=proposal.actual_cost,
            execution_notes=proposal.execution_notes,
            invoice_image_url=proposal.invoice_image_url,
            votes=votes,
        )
