from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class LedgerError(Exception):
    """Canonical error type for every rejected ledger operation.

    Raising one means the operation had no effect on ledger state.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


# Admission / claim
INVALID_PLAN = "invalid_plan"
INVALID_PLAN_CONFIG = "invalid_plan_config"
INVALID_PLAN_DURATION = "invalid_plan_duration"
ZERO_AMOUNT = "zero_amount"
INVALID_AMOUNT = "invalid_amount"
REFUND_MODE_ACTIVE = "refund_mode_active"
INSUFFICIENT_REWARD_POOL = "insufficient_reward_pool"
INVALID_INDEX = "invalid_index"
ALREADY_CLAIMED = "already_claimed"
INVALID_POSITION = "invalid_position"
LOCK_NOT_ENDED = "lock_not_ended"
REFUND_BEFORE_STAKE = "refund_before_stake"

# Gate / collaborators
PAUSED = "paused"
UNAUTHORIZED = "unauthorized"
INVALID_OWNER = "invalid_owner"
TRANSFER_FAILED = "transfer_failed"
REENTRANT_CALL = "reentrant_call"
DIRECT_TRANSFER_REJECTED = "direct_transfer_rejected"
UNKNOWN_ENTRY_POINT = "unknown_entry_point"

# Service envelope
BAD_ENVELOPE = "bad_envelope"
BAD_SIGNATURE = "bad_signature"
BAD_NONCE = "bad_nonce"
COMMIT_FAILED = "commit_failed"
