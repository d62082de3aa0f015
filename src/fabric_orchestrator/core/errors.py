"""
Error taxonomy.

We separate error types so callers can react correctly.
Example:
PrerequisiteUnmet halts a pass quietly and the switch is retried later.
InvariantViolation leaves the persisted status untouched and is logged loudly.
MalformedData points at bad input that will not fix itself, so it backs off.
ConflictError means another writer won the race and the pass reruns at once.
"""


class OrchestratorError(Exception):
    """Base class for all orchestrator exceptions."""


class PrerequisiteUnmet(OrchestratorError):
    """Raised when a convergence step cannot proceed yet, such as a missing pool or peer."""


class InvariantViolation(OrchestratorError):
    """Raised when the fabric contradicts itself, such as a top switch with machine peers."""


class MalformedData(OrchestratorError):
    """Raised when a CIDR, address or interface name cannot be parsed."""


class ConflictError(OrchestratorError):
    """Raised when a status write carries a stale resource version."""


class SwitchNotFound(OrchestratorError):
    """Raised when a switch record is looked up by a name the store does not know."""
