class EngineError(Exception):
    """Base class for adaptive engine failures."""


class NotAuthenticated(EngineError):
    """No valid caller identity. Surfaced to the boundary, never retried."""


class NotFound(EngineError):
    """Referenced user, section or entry does not exist."""


class TransientStoreError(EngineError):
    """Connectivity or lock timeout in the store. Safe to retry once for idempotent work."""


class InvariantViolation(EngineError):
    """A data invariant would be broken. The operation is aborted without partial writes."""
