"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open.
  - A breaker or policy that was wired up incorrectly.

Lease contention between workers is not an error and raises nothing.
"""


class CircuitBreakerError(Exception):
    """Base exception for the circuit breaker package."""


class CircuitOpenError(CircuitBreakerError):
    """Raised when a call is rejected because the circuit is not admitting.

    Attributes:
        service: Name of the protected service rejecting the call.
        retry_after: Seconds the caller should wait before redelivering.
    """

    def __init__(self, service: str, retry_after: float) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            service: Service whose breaker rejected the call.
            retry_after: Seconds until the caller should try again.
        """
        self.service = service
        self.retry_after = retry_after
        super().__init__(f"circuit_open: {service} retry_after={retry_after:g}s")


class ConfigurationError(CircuitBreakerError):
    """Raised when a breaker, classifier or threshold policy is misconfigured."""
