"""
signing.py - Signed proof receipts.

Every proof handed out by the API carries a receipt: an ECDSA P-256
signature over the canonical JSON of (group, root, generated_at). The
receipt binds a root to the group it was computed for and to the moment it
was issued, so a signature lifted from one group's proof does not check out
for another group, even when both groups share a root.

The key is read from SIGNING_KEY_FILE (PEM, unencrypted) on first use, or
generated in memory when no file is configured. A generated key does not
survive a restart.
"""
import base64
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

log = logging.getLogger("groups.signing")

_private_key: Optional[ec.EllipticCurvePrivateKey] = None


def _load_or_generate_key(key_file: str) -> ec.EllipticCurvePrivateKey:
    if key_file and Path(key_file).exists():
        key = serialization.load_pem_private_key(Path(key_file).read_bytes(), password=None)
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise ValueError(f"{key_file} does not hold an EC private key")
        log.info("signing key loaded from %s", key_file)
        return key
    if key_file:
        log.warning("signing key file %s not found - using an ephemeral key", key_file)
    return ec.generate_private_key(ec.SECP256R1())


def _key() -> ec.EllipticCurvePrivateKey:
    global _private_key
    if _private_key is None:
        _private_key = _load_or_generate_key(os.getenv("SIGNING_KEY_FILE", ""))
    return _private_key


def receipt_payload(group_name: str, root: str, generated_at: str) -> bytes:
    """Canonical bytes covered by a receipt signature."""
    return json.dumps(
        {"group": group_name, "root": root, "generated_at": generated_at},
        sort_keys=True, separators=(",", ":"),
    ).encode("utf-8")


def sign_receipt(group_name: str, root: str, generated_at: str) -> str:
    """Sign a proof receipt. Returns a base64-encoded DER signature."""
    der_sig = _key().sign(
        receipt_payload(group_name, root, generated_at),
        ec.ECDSA(hashes.SHA256()),
    )
    return base64.b64encode(der_sig).decode("ascii")


def verify_receipt(group_name: str, root: str, generated_at: str, signature_b64: str) -> bool:
    try:
        der_sig = base64.b64decode(signature_b64, validate=True)
        _key().public_key().verify(
            der_sig,
            receipt_payload(group_name, root, generated_at),
            ec.ECDSA(hashes.SHA256()),
        )
        return True
    except (InvalidSignature, ValueError):
        return False


def public_key_pem() -> str:
    return _key().public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def key_fingerprint() -> str:
    """First 16 hex chars of SHA-256 over the DER public key."""
    der = _key().public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()[:16]


def signer_id() -> str:
    return os.getenv("SIGNER_ID", "merkle-groups-01")
