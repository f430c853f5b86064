from __future__ import annotations

"""Pydantic request schemas for the public API.

The ledger's own envelope checks live in lockvault.runtime.service; these
exist only for HTTP input validation and error UX.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ActionEnvelope(BaseModel):
    action: str = Field(..., min_length=1, description="stake | claim | deposit_rewards | ...")
    caller: str = Field(..., min_length=1, description="Caller account id (Ed25519 pubkey hex)")
    nonce: int = Field(..., strict=True, gt=0, description="Next account nonce (last + 1)")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Action arguments")
    sig: Optional[str] = Field(default=None, description="Ed25519 signature over the canonical message")

    # Extra fields are kept; they are not covered by the signature.
    model_config = {"extra": "allow"}
