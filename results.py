"""
Typed outcomes returned by the engines.

Expected conditions (bad token, lost race, illegal transition) come back as
``Result.failure`` values carrying an ``ErrorCode``; only infrastructure faults
raise. Routes translate the code into the JSON ``code`` field the UI switches on.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class ErrorCode(enum.Enum):
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    ALREADY_RESPONDED = "ALREADY_RESPONDED"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FORBIDDEN = "FORBIDDEN"
    AUTH_REQUIRED = "AUTH_REQUIRED"


HTTP_STATUS = {
    ErrorCode.INVALID_TOKEN: 404,
    ErrorCode.TOKEN_EXPIRED: 410,
    ErrorCode.ALREADY_RESPONDED: 409,
    ErrorCode.ALREADY_CLAIMED: 409,
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.AUTH_REQUIRED: 401,
}


@dataclass
class Result:
    ok: bool
    value: Any = None
    code: Optional[ErrorCode] = None
    error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, value=None) -> 'Result':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, code: ErrorCode, error: str, **extra) -> 'Result':
        return cls(ok=False, code=code, error=error, extra=extra)

    @property
    def http_status(self) -> int:
        return 200 if self.ok else HTTP_STATUS.get(self.code, 400)

    def error_body(self) -> Dict[str, Any]:
        body = {'success': False, 'code': self.code.value, 'error': self.error}
        body.update(self.extra)
        return body
