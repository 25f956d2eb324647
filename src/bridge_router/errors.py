"""
Error taxonomy for the bridge router.

Every error is raised synchronously by the operation that detects it. State
changing operations run inside ``ledger.atomic`` so a raised error leaves all
component state exactly as it was before the call.
"""


class BridgeRouterError(Exception):
    """Base class for all protocol errors."""


class InvalidInputError(BridgeRouterError, ValueError):
    """Rejected input: fee above max, unknown identifier, unlisted token."""


class InvalidStateError(InvalidInputError):
    """Operation invoked from a lifecycle state that does not allow it."""


class ConflictError(BridgeRouterError):
    """A pending relay or dispute already exists for the deposit."""


class InsufficientAuthorizationError(BridgeRouterError):
    """A token pull failed, or the caller lacks the required role."""


class ExternalDependencyUnavailableError(BridgeRouterError, LookupError):
    """A required service could not be resolved or reached."""
