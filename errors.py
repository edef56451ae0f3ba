"""
Error taxonomy for availability capture and period generation.

Every error raised to callers of the ledger, the generator, or the period
store derives from PlannerError.  `retryable` tells the API layer whether
the client may safely repeat the request unchanged.
"""


class PlannerError(Exception):
    retryable = False


class NotFound(PlannerError):
    """Trip (or other referenced record) does not exist."""


class NotAuthorized(PlannerError):
    """Caller is not a participant of the trip."""


class InvalidDate(PlannerError):
    """A submitted date is malformed, empty, or outside the trip window."""


class InvalidTripWindow(InvalidDate):
    """Trip end_date is before start_date (bad data from the trip owner side)."""


class NoEligibleMembers(PlannerError):
    """Generation requested on a trip with zero accepted members."""


class StorageConflict(PlannerError):
    """A transaction could not commit after the configured number of attempts."""
    retryable = True


class NotificationFailure(PlannerError):
    """A single notification attempt failed.  Never leaves the notifier."""
    retryable = True
