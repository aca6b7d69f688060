class AssemblyError(ValueError):
    """Malformed or degenerate input geometry; no solver state is produced."""


class FactorizationError(RuntimeError):
    """The direct solve could not factorize the system (not positive definite)."""
