"""Domain exceptions for setup, invocation, and billing diagnostics.

Responsibilities:
- Separate fatal setup failures from per-call invocation failures.
- Carry retry classification metadata from provider adapters to workers.

Key types:
- `SetupError`: fatal, raised before the invocation loop starts.
- `InvocationError`: base for per-call failures with `TransientCallError`
  and `PermanentCallError` subclasses.
- `BillingUnavailableError`: signals degraded cost tracking, never fatal.
"""

from __future__ import annotations


class SetupError(RuntimeError):
    """Raised when configuration, credentials, or dependencies are unusable."""

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
    ) -> None:
        """Initialize a stage-scoped setup error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint


class InvocationError(RuntimeError):
    """Raised when one inference call fails."""

    retriable = False

    def __init__(
        self,
        message: str,
        *,
        failure_kind: str = "unknown",
        throttled: bool = False,
        status_code: int | None = None,
        provider_code: str | None = None,
    ) -> None:
        """Initialize provider error metadata for worker-level handling."""

        super().__init__(message)
        self.failure_kind = failure_kind
        self.throttled = throttled
        self.status_code = status_code
        self.provider_code = provider_code


class TransientCallError(InvocationError):
    """Timeout, throttling, 5xx, or connection failure worth retrying."""

    retriable = True


class PermanentCallError(InvocationError):
    """Authentication, permission, or model failure that retrying cannot fix."""

    retriable = False


class BillingUnavailableError(RuntimeError):
    """Raised when the authoritative billing source cannot be queried."""
