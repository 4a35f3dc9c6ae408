from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    EMAIL_ALREADY_VERIFIED = "EMAIL_ALREADY_VERIFIED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    PAYMENT_NOT_PENDING = "PAYMENT_NOT_PENDING"
    ALREADY_SUBSCRIBED = "ALREADY_SUBSCRIBED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_ALREADY_USED = "TOKEN_ALREADY_USED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    REQUIRES_SUBSCRIPTION = "REQUIRES_SUBSCRIPTION"
    FEATURE_UNAVAILABLE = "FEATURE_UNAVAILABLE"
    GATEWAY_DECLINED = "GATEWAY_DECLINED"
    EMAIL_DELIVERY_FAILED = "EMAIL_DELIVERY_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    UNEXPECTED = "UNEXPECTED"


ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.ACCOUNT_LOCKED: 423,
    ErrorCode.EMAIL_NOT_VERIFIED: 403,
    ErrorCode.EMAIL_ALREADY_VERIFIED: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.PAYMENT_NOT_PENDING: 409,
    ErrorCode.ALREADY_SUBSCRIBED: 409,
    ErrorCode.SUBSCRIPTION_EXPIRED: 400,
    ErrorCode.TOKEN_EXPIRED: 410,
    ErrorCode.TOKEN_ALREADY_USED: 400,
    ErrorCode.QUOTA_EXCEEDED: 403,
    ErrorCode.REQUIRES_SUBSCRIPTION: 403,
    ErrorCode.FEATURE_UNAVAILABLE: 403,
    # a declined payment is a business outcome, not a transport failure
    ErrorCode.GATEWAY_DECLINED: 200,
    ErrorCode.EMAIL_DELIVERY_FAILED: 502,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.UNEXPECTED: 500,
}


def error_body(code: ErrorCode, message: str, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": False,
        "error": {
            "code": code.value,
            "message": message,
        },
    }
    body.update(extra)
    return body


@dataclass
class ServiceResult:
    """
    Outcome of a core operation.

    Expected failures (bad input, wrong password, exhausted quota, declined
    card) come back as a failed result instead of an exception. `internal`
    carries values the route layer needs but must never serialize, such as
    the signed session credential.
    """

    ok: bool
    data: dict[str, Any] = field(default_factory=dict)
    code: ErrorCode | None = None
    message: str | None = None
    internal: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, **data: Any) -> "ServiceResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, code: ErrorCode, message: str, **data: Any) -> "ServiceResult":
        return cls(ok=False, data=data, code=code, message=message)

    @property
    def status_code(self) -> int:
        if self.ok:
            return 200
        return ERROR_STATUS[self.code]

    def body(self) -> dict[str, Any]:
        if self.ok:
            return {"success": True, **self.data}
        return error_body(self.code, self.message or "", **self.data)

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=jsonable_encoder(self.body()),
        )
