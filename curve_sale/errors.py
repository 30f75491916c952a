"""
Exception hierarchy for the sale engine.

Every failure aborts the enclosing call; the engine restores its checkpoint
before the exception reaches the caller.
"""


class SaleError(Exception):
    """Base class for all sale engine failures."""
    pass


# ==============================================================================
# VALIDATION
# ==============================================================================

class ValidationError(SaleError):
    """Raised when an argument fails validation."""
    pass


class InvalidAmount(ValidationError):
    pass


class AmountTooLow(ValidationError):
    pass


class AmountExceedsLimit(ValidationError):
    pass


class InvalidAddress(ValidationError):
    pass


class InvalidParameter(ValidationError):
    pass


# ==============================================================================
# STATE PRECONDITIONS
# ==============================================================================

class StateError(SaleError):
    """Raised when the engine is not in a state that allows the call."""
    pass


class AlreadyMigrated(StateError):
    pass


class NotMigrated(StateError):
    pass


class TradingPaused(StateError):
    pass


class ExceededRateLimit(StateError):
    pass


class ExceedsPriceImpact(StateError):
    pass


class MaxUsersReached(StateError):
    pass


class ExceedsTotalSupply(StateError):
    pass


class InsufficientReserve(StateError):
    pass


class ReentrantCall(StateError):
    pass


class Unauthorized(StateError):
    pass


class EmergencyModeRequired(StateError):
    pass


# ==============================================================================
# RESOURCES
# ==============================================================================

class ResourceError(SaleError):
    """Raised when a balance, allowance or credit is insufficient."""
    pass


class InsufficientBalance(ResourceError):
    pass


class InsufficientFunds(ResourceError):
    pass


class InsufficientAllowance(ResourceError):
    pass


class NoPendingPayments(ResourceError):
    pass


# ==============================================================================
# EXTERNAL CALLS
# ==============================================================================

class ExternalCallError(SaleError):
    """Raised when a call into a collaborator does not succeed."""
    pass


class TransferFailed(ExternalCallError):
    pass


class MigrationFailed(ExternalCallError):
    pass


# ==============================================================================
# LOCKS AND GOVERNANCE
# ==============================================================================

class UnknownLock(ValidationError):
    pass


class StillLocked(StateError):
    pass


class LockReleased(StateError):
    pass


class TimelockError(StateError):
    """Raised when a queued call is missing, not yet executable or stale."""
    pass
