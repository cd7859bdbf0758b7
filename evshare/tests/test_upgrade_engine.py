"""
Tests for the upgrade proposal lifecycle (services/upgrade_engine.py).

Tests cover:
- Decision rule (strict majority, veto)
- Propose with implicit proposer vote
- Voting, closing and duplicate votes
- Execution with an atomic fund debit
- Cancellation rules
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select, update

from evshare.models import FundUsage, UpgradeProposal, VehicleCoOwner
from evshare.models.upgrade import ProposalStatus, UpgradeType
from evshare.schemas.upgrade import UpgradeDetails
from evshare.services.exceptions import (
    AlreadyExecutedError,
    AlreadyVotedError,
    ConcurrentModificationError,
    FundNotFoundError,
    InsufficientFundsError,
    InvalidCostError,
    NotApprovedError,
    NotAuthorizedError,
    NotCancellableError,
    NotCoOwnerError,
    ProposalNotFoundError,
    VehicleNotFoundError,
    VotingClosedError,
)
from evshare.services.unit_of_work import unit_of_work
from evshare.services.upgrade_engine import (
    AUTO_APPROVE_COMMENT,
    decide_status,
    required_approvals,
)


def battery_upgrade(cost="300.00", **overrides) -> UpgradeDetails:
    fields = dict(
        upgrade_type=UpgradeType.BATTERY_UPGRADE,
        title="Replace traction battery",
        description="Battery health dropped below 70%",
        estimated_cost=Decimal(cost),
    )
    fields.update(overrides)
    return UpgradeDetails(**fields)


class TestDecisionRule:
    """The approval rule on its own"""

    @pytest.mark.parametrize("approvals,rejections,total,expected", [
        (1, 0, 1, ProposalStatus.APPROVED),
        (1, 0, 2, ProposalStatus.PENDING),
        (2, 0, 2, ProposalStatus.APPROVED),
        (2, 0, 3, ProposalStatus.APPROVED),
        (2, 0, 4, ProposalStatus.PENDING),
        (3, 0, 4, ProposalStatus.APPROVED),
        (3, 1, 4, ProposalStatus.REJECTED),
        (0, 1, 4, ProposalStatus.REJECTED),
        (0, 0, 0, ProposalStatus.PENDING),
    ])
    def test_decide_status(self, approvals, rejections, total, expected):
        assert decide_status(approvals, rejections, total) == expected

    def test_required_approvals_is_strict_majority(self):
        assert required_approvals(1) == 1
        assert required_approvals(2) == 2
        assert required_approvals(3) == 2
        assert required_approvals(4) == 3
        assert required_approvals(5) == 3


class TestPropose:

    @pytest.mark.asyncio
    async def test_propose_creates_pending_with_proposer_vote(self, upgrade_engine, owners, vehicle_factory):
        alice = owners[0]
        vehicle_id = await vehicle_factory(owners)

        details = await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=alice, details=battery_upgrade())

        assert details.status == ProposalStatus.PENDING.value
        assert details.proposer_id == alice
        assert details.proposer_name == "Alice Nguyen"
        assert details.vehicle_name == "Shared VF8"
        assert details.estimated_cost == Decimal("300.00")
        assert details.tally.total_co_owners == 4
        assert details.tally.required_approvals == 3
        assert details.tally.current_approvals == 1
        assert details.tally.current_rejections == 0
        assert details.tally.approval_percentage == Decimal("25.00")

        assert len(details.votes) == 1
        assert details.votes[0].voter_id == alice
        assert details.votes[0].is_approve is True
        assert details.votes[0].comments == AUTO_APPROVE_COMMENT

    @pytest.mark.asyncio
    async def test_sole_owner_proposal_is_approved_immediately(self, upgrade_engine, user_factory, vehicle_factory):
        owner = await user_factory(fullname="Solo Owner")
        vehicle_id = await vehicle_factory([owner])

        details = await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=owner, details=battery_upgrade())

        assert details.status == ProposalStatus.APPROVED.value
        assert details.is_approved is True
        assert details.tally.approval_percentage == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_unknown_vehicle(self, upgrade_engine, owners):
        with pytest.raises(VehicleNotFoundError):
            await upgrade_engine.propose(vehicle_id=999, proposer_id=owners[0], details=battery_upgrade())

    @pytest.mark.asyncio
    async def test_outsider_cannot_propose(self, upgrade_engine, owners, user_factory, vehicle_factory):
        outsider = await user_factory(fullname="Outsider")
        vehicle_id = await vehicle_factory(owners)

        with pytest.raises(NotCoOwnerError):
            await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=outsider, details=battery_upgrade())

    @pytest.mark.asyncio
    async def test_negative_estimated_cost_rejected(self, upgrade_engine, async_db_session, owners, vehicle_factory):
        vehicle_id = await vehicle_factory(owners)

        with pytest.raises(InvalidCostError):
            await upgrade_engine.propose(
                vehicle_id=vehicle_id, proposer_id=owners[0], details=battery_upgrade(cost="-1.00")
            )

        proposals = (await async_db_session.execute(select(UpgradeProposal))).scalars().all()
        assert proposals == []

    @pytest.mark.asyncio
    async def test_zero_estimated_cost_allowed(self, upgrade_engine, owners, vehicle_factory):
        vehicle_id = await vehicle_factory(owners)

        details = await upgrade_engine.propose(
            vehicle_id=vehicle_id, proposer_id=owners[0], details=battery_upgrade(cost="0")
        )

        assert details.estimated_cost == Decimal("0")

    @pytest.mark.parametrize("cost", ["1e30", "10000000000000.00"])
    @pytest.mark.asyncio
    async def test_oversized_estimated_cost(self, upgrade_engine, async_db_session, owners, vehicle_factory, cost):
        vehicle_id = await vehicle_factory(owners)

        with pytest.raises(InvalidCostError):
            await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=owners[0], details=battery_upgrade(cost))

        assert (await async_db_session.execute(select(UpgradeProposal))).scalars().all() == []


class TestVote:

    @pytest.mark.asyncio
    async def test_half_is_not_a_majority(self, upgrade_engine, owners, vehicle_factory):
        alice, bob, carol, _ = owners
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=alice, details=battery_upgrade())).proposal_id

        after_bob = await upgrade_engine.vote(proposal_id=pid, voter_id=bob, is_approve=True)
        assert after_bob.status == ProposalStatus.PENDING.value
        assert after_bob.tally.current_approvals == 2

        after_carol = await upgrade_engine.vote(proposal_id=pid, voter_id=carol, is_approve=True)
        assert after_carol.status == ProposalStatus.APPROVED.value
        assert after_carol.tally.current_approvals == 3
        assert after_carol.tally.approval_percentage == Decimal("75.00")

    @pytest.mark.asyncio
    async def test_single_rejection_vetoes(self, upgrade_engine, owners, vehicle_factory):
        alice, bob, carol, _ = owners
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=alice, details=battery_upgrade())).proposal_id
        await upgrade_engine.vote(proposal_id=pid, voter_id=bob, is_approve=True)

        details = await upgrade_engine.vote(proposal_id=pid, voter_id=carol, is_approve=False, comments="Too expensive")

        assert details.status == ProposalStatus.REJECTED.value
        assert details.is_rejected is True
        assert details.tally.current_rejections == 1

    @pytest.mark.asyncio
    async def test_voting_closes_once_decided(self, upgrade_engine, user_factory, vehicle_factory):
        a = await user_factory(fullname="A")
        b = await user_factory(fullname="B")
        c = await user_factory(fullname="C")
        vehicle_id = await vehicle_factory([a, b, c])
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=a, details=battery_upgrade())).proposal_id

        details = await upgrade_engine.vote(proposal_id=pid, voter_id=b, is_approve=True)
        assert details.status == ProposalStatus.APPROVED.value

        with pytest.raises(VotingClosedError):
            await upgrade_engine.vote(proposal_id=pid, voter_id=c, is_approve=False)

        details = await upgrade_engine.get_proposal_details(proposal_id=pid, user_id=c)
        assert details.status == ProposalStatus.APPROVED.value
        assert details.tally.current_rejections == 0

    @pytest.mark.asyncio
    async def test_two_owner_rejection(self, upgrade_engine, user_factory, vehicle_factory):
        a = await user_factory(fullname="A")
        b = await user_factory(fullname="B")
        vehicle_id = await vehicle_factory([a, b])

        proposed = await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=a, details=battery_upgrade())
        assert proposed.status == ProposalStatus.PENDING.value

        details = await upgrade_engine.vote(proposal_id=proposed.proposal_id, voter_id=b, is_approve=False)
        assert details.status == ProposalStatus.REJECTED.value

    @pytest.mark.asyncio
    async def test_proposer_cannot_vote_again(self, upgrade_engine, owners, vehicle_factory):
        alice = owners[0]
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=alice, details=battery_upgrade())).proposal_id

        with pytest.raises(AlreadyVotedError):
            await upgrade_engine.vote(proposal_id=pid, voter_id=alice, is_approve=True)

    @pytest.mark.asyncio
    async def test_duplicate_vote_keeps_first_vote(self, upgrade_engine, owners, vehicle_factory):
        alice, bob, _, _ = owners
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=alice, details=battery_upgrade())).proposal_id
        await upgrade_engine.vote(proposal_id=pid, voter_id=bob, is_approve=True)

        with pytest.raises(AlreadyVotedError):
            await upgrade_engine.vote(proposal_id=pid, voter_id=bob, is_approve=False)

        details = await upgrade_engine.get_proposal_details(proposal_id=pid, user_id=bob)
        assert details.status == ProposalStatus.PENDING.value
        assert details.tally.current_approvals == 2
        assert details.tally.current_rejections == 0

    @pytest.mark.asyncio
    async def test_outsider_cannot_vote(self, upgrade_engine, owners, user_factory, vehicle_factory):
        outsider = await user_factory(fullname="Outsider")
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=owners[0], details=battery_upgrade())).proposal_id

        with pytest.raises(NotCoOwnerError):
            await upgrade_engine.vote(proposal_id=pid, voter_id=outsider, is_approve=False)

    @pytest.mark.asyncio
    async def test_unknown_proposal(self, upgrade_engine, owners):
        with pytest.raises(ProposalNotFoundError):
            await upgrade_engine.vote(proposal_id=12345, voter_id=owners[0], is_approve=True)

    @pytest.mark.asyncio
    async def test_votes_listed_newest_first(self, upgrade_engine, clock, owners, vehicle_factory):
        alice, bob, _, _ = owners
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=alice, details=battery_upgrade())).proposal_id

        clock.advance(timedelta(hours=1))
        details = await upgrade_engine.vote(proposal_id=pid, voter_id=bob, is_approve=True, comments="Go for it")

        assert [v.voter_id for v in details.votes] == [bob, alice]
        assert details.votes[0].voter_name == "Bob Tran"
        assert details.votes[0].comments == "Go for it"

    @pytest.mark.asyncio
    async def test_threshold_uses_current_co_owner_count(
        self, upgrade_engine, async_db_session, owners, vehicle_factory
    ):
        alice, bob, _, dave = owners
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=alice, details=battery_upgrade())).proposal_id

        # Dave sells his share; 2 of the remaining 3 is now a majority
        await async_db_session.execute(
            update(VehicleCoOwner)
            .where(VehicleCoOwner.vehicle_id == vehicle_id, VehicleCoOwner.user_id == dave)
            .values(ownership_percentage=Decimal("0"))
        )
        await async_db_session.commit()

        details = await upgrade_engine.vote(proposal_id=pid, voter_id=bob, is_approve=True)

        assert details.tally.total_co_owners == 3
        assert details.status == ProposalStatus.APPROVED.value

    @pytest.mark.asyncio
    async def test_former_co_owner_cannot_vote(self, upgrade_engine, async_db_session, owners, vehicle_factory):
        alice, _, _, dave = owners
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=alice, details=battery_upgrade())).proposal_id

        await async_db_session.execute(
            update(VehicleCoOwner)
            .where(VehicleCoOwner.vehicle_id == vehicle_id, VehicleCoOwner.user_id == dave)
            .values(ownership_percentage=Decimal("0"))
        )
        await async_db_session.commit()

        with pytest.raises(NotCoOwnerError):
            await upgrade_engine.vote(proposal_id=pid, voter_id=dave, is_approve=True)


class TestExecute:

    async def _approved_proposal(self, engine, owners, vehicle_id, details=None) -> int:
        alice, bob, carol, _ = owners
        pid = (await engine.propose(vehicle_id=vehicle_id, proposer_id=alice, details=details or battery_upgrade())).proposal_id
        await engine.vote(proposal_id=pid, voter_id=bob, is_approve=True)
        await engine.vote(proposal_id=pid, voter_id=carol, is_approve=True)
        return pid

    @pytest.mark.asyncio
    async def test_execute_pending_fails_and_leaves_fund_alone(
        self, upgrade_engine, fund_ledger, owners, vehicle_factory
    ):
        vehicle_id = await vehicle_factory(owners, balance=Decimal("1000.00"))
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=owners[0], details=battery_upgrade())).proposal_id

        with pytest.raises(NotApprovedError):
            await upgrade_engine.execute(proposal_id=pid, actor_id=owners[0], actual_cost=Decimal("300.00"))

        assert await fund_ledger.get_balance(vehicle_id) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_insufficient_funds_changes_nothing(
        self, upgrade_engine, fund_ledger, async_db_session, owners, vehicle_factory
    ):
        vehicle_id = await vehicle_factory(owners, balance=Decimal("100.00"))
        pid = await self._approved_proposal(upgrade_engine, owners, vehicle_id)

        with pytest.raises(InsufficientFundsError) as exc_info:
            await upgrade_engine.execute(proposal_id=pid, actor_id=owners[0], actual_cost=Decimal("500.00"))

        assert "Available: 100.00" in exc_info.value.message
        assert await fund_ledger.get_balance(vehicle_id) == Decimal("100.00")
        details = await upgrade_engine.get_proposal_details(proposal_id=pid, user_id=owners[0])
        assert details.status == ProposalStatus.APPROVED.value
        assert details.actual_cost is None
        usages = (await async_db_session.execute(select(FundUsage))).scalars().all()
        assert usages == []

    @pytest.mark.asyncio
    async def test_execute_debits_exactly_once(self, upgrade_engine, fund_ledger, owners, vehicle_factory):
        vehicle_id = await vehicle_factory(owners, balance=Decimal("1000.00"))
        pid = await self._approved_proposal(upgrade_engine, owners, vehicle_id)

        details = await upgrade_engine.execute(
            proposal_id=pid,
            actor_id=owners[0],
            actual_cost=Decimal("300.00"),
            execution_notes="Installed at VinFast service center",
            invoice_image_url="https://cdn.example.com/invoices/1.png",
        )

        assert details.status == ProposalStatus.EXECUTED.value
        assert details.is_executed is True
        assert details.actual_cost == Decimal("300.00")
        assert details.executed_at is not None
        assert details.execution_notes == "Installed at VinFast service center"
        assert await fund_ledger.get_balance(vehicle_id) == Decimal("700.00")

        usages = await fund_ledger.list_usages_for_reference(pid)
        assert len(usages) == 1
        assert usages[0]["amount"] == Decimal("300.00")
        assert usages[0]["usage_type"] == "maintenance"
        assert usages[0]["description"] == "Upgrade: Replace traction battery"

        with pytest.raises(AlreadyExecutedError):
            await upgrade_engine.execute(proposal_id=pid, actor_id=owners[0], actual_cost=Decimal("300.00"))

        assert await fund_ledger.get_balance(vehicle_id) == Decimal("700.00")
        assert len(await fund_ledger.list_usages_for_reference(pid)) == 1

    @pytest.mark.asyncio
    async def test_only_proposer_or_admin_can_execute(
        self, upgrade_engine, fund_ledger, owners, admin_id, vehicle_factory
    ):
        vehicle_id = await vehicle_factory(owners, balance=Decimal("1000.00"))
        pid = await self._approved_proposal(upgrade_engine, owners, vehicle_id)

        with pytest.raises(NotAuthorizedError):
            await upgrade_engine.execute(proposal_id=pid, actor_id=owners[1], actual_cost=Decimal("250.00"))

        details = await upgrade_engine.execute(proposal_id=pid, actor_id=admin_id, actual_cost=Decimal("250.00"))

        assert details.status == ProposalStatus.EXECUTED.value
        assert await fund_ledger.get_balance(vehicle_id) == Decimal("750.00")

    @pytest.mark.asyncio
    async def test_authorization_checked_before_state(self, upgrade_engine, owners, vehicle_factory):
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=owners[0], details=battery_upgrade())).proposal_id

        with pytest.raises(NotAuthorizedError):
            await upgrade_engine.execute(proposal_id=pid, actor_id=owners[2], actual_cost=Decimal("1"))

    @pytest.mark.asyncio
    async def test_negative_actual_cost_rejected(self, upgrade_engine, fund_ledger, owners, vehicle_factory):
        vehicle_id = await vehicle_factory(owners, balance=Decimal("1000.00"))
        pid = await self._approved_proposal(upgrade_engine, owners, vehicle_id)

        with pytest.raises(InvalidCostError):
            await upgrade_engine.execute(proposal_id=pid, actor_id=owners[0], actual_cost=Decimal("-5"))

        assert await fund_ledger.get_balance(vehicle_id) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_zero_actual_cost_executes(self, upgrade_engine, fund_ledger, owners, vehicle_factory):
        vehicle_id = await vehicle_factory(owners, balance=Decimal("1000.00"))
        pid = await self._approved_proposal(upgrade_engine, owners, vehicle_id)

        details = await upgrade_engine.execute(proposal_id=pid, actor_id=owners[0], actual_cost=Decimal("0"))

        assert details.status == ProposalStatus.EXECUTED.value
        assert await fund_ledger.get_balance(vehicle_id) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_vehicle_without_fund(self, upgrade_engine, owners, vehicle_factory):
        vehicle_id = await vehicle_factory(owners, with_fund=False)
        pid = await self._approved_proposal(upgrade_engine, owners, vehicle_id)

        with pytest.raises(FundNotFoundError):
            await upgrade_engine.execute(proposal_id=pid, actor_id=owners[0], actual_cost=Decimal("10"))

        details = await upgrade_engine.get_proposal_details(proposal_id=pid, user_id=owners[0])
        assert details.status == ProposalStatus.APPROVED.value

    @pytest.mark.asyncio
    async def test_insurance_upgrade_recorded_as_insurance_usage(
        self, upgrade_engine, fund_ledger, owners, vehicle_factory
    ):
        vehicle_id = await vehicle_factory(owners)
        pid = await self._approved_proposal(
            upgrade_engine, owners, vehicle_id,
            details=battery_upgrade(upgrade_type=UpgradeType.INSURANCE_PACKAGE, title="Comprehensive cover"),
        )

        await upgrade_engine.execute(proposal_id=pid, actor_id=owners[0], actual_cost=Decimal("120.00"))

        usages = await fund_ledger.list_usages_for_reference(pid)
        assert usages[0]["usage_type"] == "insurance"

    @pytest.mark.parametrize("cost", [Decimal("1e30"), Decimal("Infinity"), Decimal("10000000000000.00")])
    @pytest.mark.asyncio
    async def test_oversized_actual_cost_is_invalid(
        self, upgrade_engine, fund_ledger, owners, vehicle_factory, cost
    ):
        vehicle_id = await vehicle_factory(owners, balance=Decimal("1000.00"))
        pid = await self._approved_proposal(upgrade_engine, owners, vehicle_id)

        with pytest.raises(InvalidCostError):
            await upgrade_engine.execute(proposal_id=pid, actor_id=owners[0], actual_cost=cost)

        assert await fund_ledger.get_balance(vehicle_id) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_unknown_proposal_checked_before_cost(self, upgrade_engine, owners):
        with pytest.raises(ProposalNotFoundError):
            await upgrade_engine.execute(proposal_id=4040, actor_id=owners[0], actual_cost=Decimal("1e30"))


class TestCancel:

    @pytest.mark.asyncio
    async def test_proposer_cancels_pending(self, upgrade_engine, owners, vehicle_factory):
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=owners[0], details=battery_upgrade())).proposal_id

        details = await upgrade_engine.cancel(proposal_id=pid, actor_id=owners[0])

        assert details.status == ProposalStatus.CANCELLED.value
        assert details.is_cancelled is True
        with pytest.raises(VotingClosedError):
            await upgrade_engine.vote(proposal_id=pid, voter_id=owners[1], is_approve=True)

    @pytest.mark.asyncio
    async def test_cancel_approved_moves_no_money(self, upgrade_engine, fund_ledger, user_factory, vehicle_factory):
        owner = await user_factory(fullname="Solo Owner")
        vehicle_id = await vehicle_factory([owner], balance=Decimal("500.00"))
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=owner, details=battery_upgrade())).proposal_id

        details = await upgrade_engine.cancel(proposal_id=pid, actor_id=owner)

        assert details.status == ProposalStatus.CANCELLED.value
        assert await fund_ledger.get_balance(vehicle_id) == Decimal("500.00")
        with pytest.raises(NotApprovedError):
            await upgrade_engine.execute(proposal_id=pid, actor_id=owner, actual_cost=Decimal("100"))

    @pytest.mark.asyncio
    async def test_non_proposer_cannot_cancel(self, upgrade_engine, owners, admin_id, vehicle_factory):
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=owners[0], details=battery_upgrade())).proposal_id

        with pytest.raises(NotAuthorizedError):
            await upgrade_engine.cancel(proposal_id=pid, actor_id=owners[1])

        details = await upgrade_engine.cancel(proposal_id=pid, actor_id=admin_id)
        assert details.status == ProposalStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_terminal_proposals_cannot_be_cancelled(self, upgrade_engine, owners, vehicle_factory):
        alice, bob, _, _ = owners
        vehicle_id = await vehicle_factory(owners)
        rejected = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=alice, details=battery_upgrade())).proposal_id
        await upgrade_engine.vote(proposal_id=rejected, voter_id=bob, is_approve=False)
        cancelled = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=alice, details=battery_upgrade())).proposal_id
        await upgrade_engine.cancel(proposal_id=cancelled, actor_id=alice)

        with pytest.raises(NotCancellableError):
            await upgrade_engine.cancel(proposal_id=rejected, actor_id=alice)
        with pytest.raises(NotCancellableError):
            await upgrade_engine.cancel(proposal_id=cancelled, actor_id=alice)

    @pytest.mark.asyncio
    async def test_executed_proposal_cannot_be_cancelled(self, upgrade_engine, user_factory, vehicle_factory):
        owner = await user_factory(fullname="Solo Owner")
        vehicle_id = await vehicle_factory([owner])
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=owner, details=battery_upgrade())).proposal_id
        await upgrade_engine.execute(proposal_id=pid, actor_id=owner, actual_cost=Decimal("300.00"))

        with pytest.raises(NotCancellableError):
            await upgrade_engine.cancel(proposal_id=pid, actor_id=owner)

    @pytest.mark.asyncio
    async def test_unknown_proposal(self, upgrade_engine, owners):
        with pytest.raises(ProposalNotFoundError):
            await upgrade_engine.cancel(proposal_id=404, actor_id=owners[0])


class TestConcurrency:
    """Optimistic version checks and replay"""

    @pytest.mark.asyncio
    async def test_stale_proposal_version_raises_concurrent_modification(
        self, upgrade_engine, async_db_session, owners, vehicle_factory
    ):
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=owners[0], details=battery_upgrade())).proposal_id

        proposal = (
            await async_db_session.execute(select(UpgradeProposal).where(UpgradeProposal.id == pid))
        ).scalar_one()

        # Another writer bumps the version behind the session's back
        await async_db_session.execute(
            update(UpgradeProposal)
            .where(UpgradeProposal.id == pid)
            .values(version=UpgradeProposal.version + 1)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(ConcurrentModificationError):
            async with unit_of_work(async_db_session):
                proposal.title = "Renamed"

    @pytest.mark.asyncio
    async def test_vote_is_replayed_after_conflict(self, upgrade_engine, owners, vehicle_factory):
        alice, bob, _, _ = owners
        vehicle_id = await vehicle_factory(owners)
        pid = (await upgrade_engine.propose(vehicle_id=vehicle_id, proposer_id=alice, details=battery_upgrade())).proposal_id

        upgrade_engine.directory.is_co_owner = AsyncMock(
            side_effect=[ConcurrentModificationError("version mismatch"), True]
        )

        details = await upgrade_engine.vote(proposal_id=pid, voter_id=bob, is_approve=True)

        assert upgrade_engine.directory.is_co_owner.call_count == 2
        assert details.tally.current_approvals == 2
