# Alembic will detect models here
from .user import User
from .vehicle import Vehicle, VehicleCoOwner
from .fund import Fund, FundUsage, FundAddition
from .upgrade import UpgradeProposal, UpgradeVote, UpgradeType, ProposalStatus
