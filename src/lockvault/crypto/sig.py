# src/lockvault/crypto/sig.py
from __future__ import annotations

import base64
import json
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

Json = Dict[str, Any]


def _decode_bytes(s: str) -> bytes:
    s = s.strip()
    if not s:
        raise ValueError("empty string")
    # hex
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    # base64 / base64url
    try:
        padding = "=" * (-len(s) % 4)
        s2 = (s + padding).replace("-", "+").replace("_", "/")
        return base64.b64decode(s2, validate=True)
    except ValueError as e:
        raise ValueError("not hex or base64") from e


def canonical_action_message(*, action: str, caller: str, nonce: int, payload: Json) -> bytes:
    """Bytes a caller signs to authorize one ledger action.

    Accounts are identified by their Ed25519 public key (hex), so `caller`
    doubles as the verification key.
    """
    obj: Json = {
        "action": str(action),
        "caller": str(caller),
        "nonce": int(nonce),
        "payload": payload if isinstance(payload, dict) else {},
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        sig_b = _decode_bytes(sig)
        pk_b = _decode_bytes(pubkey)
        key = Ed25519PublicKey.from_public_bytes(pk_b)
        key.verify(sig_b, message)
        return True
    except (InvalidSignature, ValueError):
        return False


def sign_ed25519(*, message: bytes, privkey: str, encoding: str = "hex") -> str:
    """Sign a message with an Ed25519 private key.

    privkey: hex or base64/base64url string representing a 32-byte seed.
    encoding: "hex" (default) or "b64".
    """
    pk_b = _decode_bytes(privkey)
    if len(pk_b) == 64:
        # 64-byte expanded keys carry the seed in the first half.
        pk_b = pk_b[:32]
    if len(pk_b) != 32:
        raise ValueError("ed25519 privkey must be 32-byte seed (or 64-byte expanded key)")

    key = Ed25519PrivateKey.from_private_bytes(pk_b)
    sig_b = key.sign(message)
    if encoding == "hex":
        return sig_b.hex()
    if encoding in {"b64", "base64"}:
        return base64.b64encode(sig_b).decode("ascii")
    raise ValueError("unsupported encoding")


def verify_action_envelope(env: Json) -> bool:
    """Check env["sig"] over the canonical message, using env["caller"] as the key."""
    try:
        msg = canonical_action_message(
            action=str(env.get("action") or ""),
            caller=str(env.get("caller") or ""),
            nonce=int(env.get("nonce") or 0),
            payload=env.get("payload") if isinstance(env.get("payload"), dict) else {},
        )
    except (TypeError, ValueError):
        return False
    return verify_ed25519_signature(message=msg, sig=str(env.get("sig") or ""), pubkey=str(env.get("caller") or ""))


def sign_action_envelope(*, env: Json, privkey: str, encoding: str = "hex") -> Json:
    """Return a copy of env with its 'sig' field populated."""
    action = str(env.get("action") or "")
    caller = str(env.get("caller") or "")
    nonce = int(env.get("nonce") or 0)
    payload = env.get("payload") if isinstance(env.get("payload"), dict) else {}

    msg = canonical_action_message(action=action, caller=caller, nonce=nonce, payload=payload)
    out = dict(env)
    out.update({"action": action, "caller": caller, "nonce": nonce, "payload": payload})
    out["sig"] = sign_ed25519(message=msg, privkey=privkey, encoding=encoding)
    return out
