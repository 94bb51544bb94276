"""Error types shared across the service"""


class DeduperError(Exception):
    """Base class for errors raised by the deduper"""


class AuthenticationError(DeduperError):
    """Bad webhook signature, missing signature header or failed credential refresh"""


class ValidationError(DeduperError):
    """Malformed submission; reported back to the client"""


class TransientRemoteError(DeduperError):
    """A GitHub API call failed; the next sweep or webhook delivery retries it"""


class PersistenceError(DeduperError):
    """The database could not complete the current unit of work"""
