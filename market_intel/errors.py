"""
Error kinds raised by the engines.

Read paths return None for a missing entity; mutation paths raise NotFound.
Routes translate these into HTTP status codes (see ERROR_STATUS).
"""


class MarketIntelError(Exception):
    """Base class for every engine error."""


class InvalidInput(MarketIntelError):
    """Missing or out-of-range parameters. Never retried."""


class MissingLocation(InvalidInput):
    """A load lacks its pickup or delivery location."""


class NotFound(MarketIntelError):
    pass


class InvalidTransition(MarketIntelError):
    """State-machine violation. The entity is left unchanged."""


class DuplicateBid(MarketIntelError):
    """A bidder already holds a bid on the auction. Nothing was written."""


class ExternalServiceError(MarketIntelError):
    """A collaborator call failed after its own retry policy."""


ERROR_STATUS: dict[type[MarketIntelError], int] = {
    InvalidInput: 422,
    NotFound: 404,
    InvalidTransition: 409,
    DuplicateBid: 409,
    ExternalServiceError: 502,
}


def status_for(exc: MarketIntelError) -> int:
    for kind in type(exc).__mro__:
        if kind in ERROR_STATUS:
            return ERROR_STATUS[kind]
    return 500
