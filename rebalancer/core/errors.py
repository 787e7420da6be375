"""Error taxonomy for the rebalancing cycle."""
from enum import Enum


class RebalancerError(Exception):
    """Base class for errors caught at the cycle boundary."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class TransportError(RebalancerError):
    """Network or HTTP failure talking to an external service."""

    pass


class RequestTimeout(TransportError):
    """Request did not complete within its timeout."""

    pass


class SignalFetchError(RebalancerError):
    """Market signal could not be fetched or parsed."""

    pass


class ChainReadError(RebalancerError):
    """A contract read reverted, failed, or returned malformed data."""

    pass


class AdvisoryErrorKind(Enum):
    INVALID_RESPONSE = "invalid_response"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"


class AdvisoryError(RebalancerError):
    """Decision oracle call failed or returned an unusable answer."""

    def __init__(
        self,
        kind: AdvisoryErrorKind,
        message: str,
        cause: BaseException | None = None,
    ):
        super().__init__(f"{kind.value}: {message}", cause)
        self.kind = kind


class BuildError(RebalancerError):
    """Bundle cannot be built from the configured contracts and assets."""

    pass


class SessionError(RebalancerError):
    """Invalid session lifecycle request."""

    pass


class ExecutionErrorKind(Enum):
    INSUFFICIENT_FUNDS = "insufficient_funds"
    GAS_ESTIMATION_FAILED = "gas_estimation_failed"
    NONCE_CONFLICT = "nonce_conflict"
    UNDERPRICED = "underpriced"
    REVERTED = "reverted"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ExecutionError(RebalancerError):
    """Classified failure of a bundle step.

    Recorded on the step outcome rather than raised out of the executor.
    """

    def __init__(
        self,
        kind: ExecutionErrorKind,
        message: str,
        reason: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, cause)
        self.kind = kind
        self.message = message
        self.reason = reason

    def __str__(self) -> str:
        if self.kind is ExecutionErrorKind.REVERTED and self.reason:
            return f"{self.kind.value}({self.reason})"
        return f"{self.kind.value}: {self.message}"
