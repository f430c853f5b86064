from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from lockvault.runtime.errors import (
    ALREADY_CLAIMED,
    BAD_NONCE,
    BAD_SIGNATURE,
    COMMIT_FAILED,
    INSUFFICIENT_REWARD_POOL,
    INVALID_INDEX,
    LOCK_NOT_ENDED,
    PAUSED,
    REENTRANT_CALL,
    REFUND_BEFORE_STAKE,
    REFUND_MODE_ACTIVE,
    TRANSFER_FAILED,
    UNAUTHORIZED,
)

_FORBIDDEN = {UNAUTHORIZED, BAD_SIGNATURE}
_NOT_FOUND = {INVALID_INDEX}
# Well-formed requests the current ledger state cannot honour.
_CONFLICT = {
    ALREADY_CLAIMED,
    BAD_NONCE,
    INSUFFICIENT_REWARD_POOL,
    LOCK_NOT_ENDED,
    PAUSED,
    REENTRANT_CALL,
    REFUND_BEFORE_STAKE,
    REFUND_MODE_ACTIVE,
    TRANSFER_FAILED,
}


def status_for_code(code: str) -> int:
    if code in _FORBIDDEN:
        return 403
    if code in _NOT_FOUND:
        return 404
    if code in _CONFLICT:
        return 409
    if code == COMMIT_FAILED:
        return 503
    return 400


@dataclass(frozen=True, slots=True)
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    @staticmethod
    def from_rejection(code: str, message: str, details: Any = None) -> "ApiError":
        """Map a ledger/service rejection code onto an HTTP status."""
        d = details if isinstance(details, dict) else ({} if details is None else {"details": details})
        return ApiError(status_for_code(code), code, message, d)

    def to_json(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}
