from __future__ import annotations

from typing import Optional


class CongressoError(Exception):
    """Base class for every error raised by the ETL."""


class RequestError(CongressoError):
    def __init__(
        self,
        message: str,
        *,
        context: str = "",
        status_code: Optional[int] = None,
        url: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.context = context
        self.status_code = status_code
        self.url = url

    def __str__(self) -> str:
        msg = super().__str__()
        if self.context:
            msg = f"{self.context}: {msg}"
        if self.status_code:
            msg = f"{msg} (HTTP {self.status_code})"
        return msg


class ClientRequestError(RequestError):
    """4xx answers (not found, bad request...). Never retried."""


class TransientRequestError(RequestError):
    """Timeouts, transport failures, 408/429 and 5xx answers."""


class ValidationError(CongressoError):
    def __init__(self, errors: list[str], warnings: Optional[list[str]] = None) -> None:
        super().__init__("; ".join(errors) or "invalid options")
        self.errors = list(errors)
        self.warnings = list(warnings or [])


class NoEntitiesFoundError(CongressoError):
    """The roster (or the requested entity) came back empty."""


class StoreError(CongressoError):
    """A document store read or list failed."""


class LoadBatchError(CongressoError):
    def __init__(self, message: str, operations: int = 0) -> None:
        super().__init__(message)
        self.operations = operations
