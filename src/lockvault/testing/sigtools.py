from __future__ import annotations

import hashlib
from typing import Any, Dict, Tuple

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, PublicFormat

from lockvault.crypto.sig import sign_action_envelope

Json = Dict[str, Any]


def deterministic_ed25519_keypair(*, label: str) -> Tuple[str, str]:
    """Deterministically derive an Ed25519 keypair from a stable label.

    TEST ONLY.

    Returns:
      (pubkey_hex, privkey_seed_hex)
    """
    seed = hashlib.sha256(("lockvault-test-ed25519:" + (label or "")).encode("utf-8")).digest()
    sk = Ed25519PrivateKey.from_private_bytes(seed)
    pk_hex = sk.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()
    sk_hex = sk.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption()).hex()
    return pk_hex, sk_hex


def account_for(label: str) -> str:
    """Account id (pubkey hex) for a test label."""
    return deterministic_ed25519_keypair(label=label)[0]


def signed_action(label: str, action: str, nonce: int, **payload: Any) -> Json:
    """Build and sign an action envelope for the test account `label`."""
    pk_hex, sk_hex = deterministic_ed25519_keypair(label=label)
    env: Json = {"action": action, "caller": pk_hex, "nonce": int(nonce), "payload": payload}
    return sign_action_envelope(env=env, privkey=sk_hex)
