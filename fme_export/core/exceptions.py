"""Shared exception taxonomy.

Every domain exception raised by the package inherits from
``FmeExportError`` and carries structured context fields that callers
switch on (``code``), never on message text.

Taxonomy categories
-------------------
- ``ValidationError``: input or configuration violations, never retryable.
- ``TransientError``: temporary failures (network, throttling), retryable.
- ``PermanentError``: unrecoverable failures, not retryable.
- ``ContractError``: response shape drift from the server, never retryable.

Every exception exposes ``to_error_dict()`` for a stable structured
payload suitable for logging.
"""

from __future__ import annotations


class FmeExportError(Exception):
    """Base exception for all package errors.

    Attributes:
        message: Human-readable description or a localization key.
        code: Stable machine-readable error code (e.g. ``"URL_TOO_LONG"``).
        stage: Component where the error occurred (e.g. ``"client"``).
        status: HTTP status associated with the failure, if any.
        retryable: Whether repeating the operation may succeed.
        correlation_id: Request correlation identifier.
    """

    #: Default stage for subclasses (override via class attribute or kwarg).
    default_stage: str = ""
    #: Default code for subclasses (override via class attribute or kwarg).
    default_code: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        code: str = "",
        stage: str = "",
        status: int | None = None,
        retryable: bool = False,
        correlation_id: str = "",
    ) -> None:
        self.code = code or self.default_code
        self.message = message or self.code
        self.stage = stage or self.default_stage
        self.status = status
        self.retryable = retryable
        self.correlation_id = correlation_id
        super().__init__(self.message)

    @property
    def category(self) -> str:
        """Return the error category based on concrete class."""
        if isinstance(self, ContractError):
            return "contract"
        if isinstance(self, ValidationError):
            return "validation"
        if isinstance(self, TransientError):
            return "transient"
        if isinstance(self, PermanentError):
            return "permanent"
        return "transient" if self.retryable else "permanent"

    def to_error_dict(self) -> dict[str, object]:
        """Return a structured error payload with stable keys."""
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "status": self.status,
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(FmeExportError):
    """Input or configuration validation failure. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class TransientError(FmeExportError):
    """Temporary failure that may succeed on retry."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class PermanentError(FmeExportError):
    """Unrecoverable failure. Not retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class ContractError(FmeExportError):
    """Server response does not have the expected shape. Never retryable."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs["retryable"] = False
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
