from typing import Any, Optional

import httpx


class EngineError(Exception):
    """Base class for failures raised inside the action engine."""


class ResolutionEmpty(EngineError):
    def __init__(self, domain: str, query: Optional[str] = None):
        self.domain = domain
        self.query = query
        super().__init__(f"No {domain} matched {query!r}")


class StaleConfirmation(EngineError):
    def __init__(self, action_id: Optional[str]):
        self.action_id = action_id
        super().__init__(f"Pending action {action_id!r} is no longer active")


class OptionUnmatched(EngineError):
    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value
        super().__init__(f"Value {value!r} does not match any {field} option")


class DomainMutationFailure(EngineError):
    """A record store call failed.

    Only `short_reason` is meant for users; the full detail (status, code,
    message, request id) is surfaced when the debug flag is on.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        self.message = message
        self.status = status
        self.code = code
        self.request_id = request_id
        super().__init__(message)

    @classmethod
    def from_exception(cls, exc: Exception) -> "DomainMutationFailure":
        if isinstance(exc, DomainMutationFailure):
            return exc
        status = getattr(exc, "status", None)
        code = getattr(exc, "code", None)
        request_id = getattr(exc, "request_id", None)
        message = getattr(exc, "message", None)
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            request_id = request_id or exc.response.headers.get("x-request-id")
        elif isinstance(exc, httpx.TimeoutException):
            message = message or "timeout"
        elif isinstance(exc, httpx.RequestError):
            message = message or "network error"
        if not isinstance(message, str) or not message.strip():
            message = str(exc) or type(exc).__name__
        return cls(message.strip(), status=status, code=code, request_id=request_id)

    @property
    def short_reason(self) -> str:
        if self.status == 400 or self.code == "validation_error":
            return "the record store rejected the values"
        if self.status in (401, 403):
            return "no access to the database"
        if self.status == 404 or self.code == "object_not_found":
            return "the record was not found"
        if self.status == 409 or self.status == 429:
            return "the record store is busy, try again"
        return "the record store is unavailable"

    def detail(self) -> str:
        parts = []
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.code:
            parts.append(f"code={self.code}")
        if self.request_id:
            parts.append(f"request_id={self.request_id}")
        parts.append(f"message={self.message[:300]}")
        return " ".join(parts)

    def user_message(self, debug: bool = False) -> str:
        text = f"Could not complete the action: {self.short_reason}."
        if debug:
            text += f"\n{self.detail()}"
        return text
