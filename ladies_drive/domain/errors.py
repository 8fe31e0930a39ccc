"""Error taxonomy shared by the lifecycle, dispatch and rating services."""


class RideError(Exception):
    """Base class for every error the ride core reports to its caller."""


class InvalidInput(RideError):
    """Required fields missing or malformed at creation time."""


class InvalidTransition(RideError):
    """Raised when a ride status change violates the state machine."""


class AlreadyTaken(RideError):
    """The ride is no longer open; another driver accepted it first."""


class NotEligible(RideError):
    """The driver is not allowed to accept this request."""


class DriverBusy(NotEligible):
    """The driver is already assigned to a non-terminal ride."""


class InvalidRating(RideError):
    """Ratings must be whole numbers from 1 to 5."""


class AlreadyRated(RideError):
    """This party has already rated the other side of the ride."""


class TransactionFailed(RideError):
    """The atomic commit did not succeed; nothing was written."""


class NotFound(RideError):
    pass


class RideNotFound(NotFound):
    pass


class UserNotFound(NotFound):
    pass
