from evshare.core.retry import NonRetryableError, RetryableError


class UpgradeDomainError(NonRetryableError):
    """Base class for all upgrade-proposal domain errors."""
    status_code = 500
    error_code = "DomainError"
    kind = "Internal"

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__

    def to_dict(self) -> dict:
        return {
            "status_code": self.status_code,
            "error": self.error_code,
            "kind": self.kind,
            "message": self.message,
            "data": None,
        }


# Not found (404)
class NotFoundError(UpgradeDomainError):
    status_code = 404
    kind = "NotFound"

class VehicleNotFoundError(NotFoundError):
    """Vehicle not found."""
    error_code = "VehicleNotFound"

class ProposalNotFoundError(NotFoundError):
    """Upgrade proposal not found."""
    error_code = "ProposalNotFound"

class FundNotFoundError(NotFoundError):
    """Vehicle does not have an associated fund."""
    error_code = "FundNotFound"

class UserNotFoundError(NotFoundError):
    """User not found."""
    error_code = "UserNotFound"


# Forbidden (403)
class ForbiddenError(UpgradeDomainError):
    status_code = 403
    kind = "Forbidden"

class NotCoOwnerError(ForbiddenError):
    """You must be a co-owner of this vehicle."""
    error_code = "NotCoOwner"

class NotAuthorizedError(ForbiddenError):
    """Only admins or the proposer can perform this action."""
    error_code = "NotAuthorized"


# Invalid state (400)
class InvalidStateError(UpgradeDomainError):
    status_code = 400
    kind = "InvalidState"

class AlreadyVotedError(InvalidStateError):
    """You have already voted on this proposal."""
    error_code = "AlreadyVoted"

class VotingClosedError(InvalidStateError):
    """Voting is closed for this proposal."""
    error_code = "VotingClosed"

class NotApprovedError(InvalidStateError):
    """Only approved proposals can be marked as executed."""
    error_code = "NotApproved"

class AlreadyExecutedError(InvalidStateError):
    """This proposal has already been marked as executed."""
    error_code = "AlreadyExecuted"

class NotCancellableError(InvalidStateError):
    """This proposal can no longer be cancelled."""
    error_code = "NotCancellable"


# Validation (400)
class ValidationFailedError(UpgradeDomainError):
    status_code = 400
    kind = "Validation"
    error_code = "ValidationFailed"

class InvalidCostError(ValidationFailedError):
    """Cost must not be negative."""
    error_code = "InvalidCost"

class InvalidAmountError(ValidationFailedError):
    """Amount must be greater than 0."""
    error_code = "InvalidAmount"


# Insufficient resource (400)
class InsufficientFundsError(UpgradeDomainError):
    """Insufficient fund balance."""
    status_code = 400
    kind = "InsufficientResource"
    error_code = "InsufficientFunds"


class DatabaseQueryError(UpgradeDomainError):
    """Raised when a database statement fails."""
    error_code = "DatabaseError"


class ConcurrentModificationError(RetryableError):
    """Another request changed the same proposal or fund; safe to replay."""
    status_code = 409
    error_code = "ConcurrentModification"
    kind = "Conflict"
