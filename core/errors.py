"""Error taxonomy shared by the store, gateway, persistence and engine."""


class RoastMonitorError(Exception):
    pass


class ValidationError(RoastMonitorError):
    """Rejected local input; raised before any remote call is made."""


class GatewayError(RoastMonitorError):
    """A remote call failed (network, auth, or backend rejection)."""

    def __init__(self, message: str, *, status: int | None = None, code: str = ""):
        super().__init__(message)
        self.status = status
        self.code = code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            return f"{base} (status={self.status})"
        return base


class PersistenceError(RoastMonitorError):
    """Local state could not be written or read back."""


__all__ = [
    "RoastMonitorError",
    "ValidationError",
    "GatewayError",
    "PersistenceError",
]
