"""
Unit tests for signed proof receipts.

A receipt only verifies for the exact group, root and issue time it was
signed over.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import hashlib

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from merkle_groups import signing
from merkle_groups.signing import (
    key_fingerprint, public_key_pem, receipt_payload, sign_receipt, signer_id,
    verify_receipt,
)

ROOT = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
ISSUED = "2024-05-01T12:00:00+00:00"


def test_receipt_round_trip():
    sig = sign_receipt("devs", ROOT, ISSUED)
    assert isinstance(sig, str)
    assert len(sig) > 0
    assert verify_receipt("devs", ROOT, ISSUED, sig) is True


def test_receipt_moved_to_other_group_fails():
    sig = sign_receipt("devs", ROOT, ISSUED)
    assert verify_receipt("ops", ROOT, ISSUED, sig) is False


def test_receipt_with_other_issue_time_fails():
    sig = sign_receipt("devs", ROOT, ISSUED)
    assert verify_receipt("devs", ROOT, "2024-05-02T12:00:00+00:00", sig) is False


def test_other_root_fails_verification():
    other = "ba7816bf8f01cfea414140de5dae2268b88c5d2a4a5688d8eb0a6e61ec17be86"
    assert verify_receipt("devs", other, ISSUED, sign_receipt("devs", ROOT, ISSUED)) is False


def test_garbage_signature_is_rejected():
    assert verify_receipt("devs", ROOT, ISSUED, "not base64!!") is False
    assert verify_receipt("devs", ROOT, ISSUED, "AAAA") is False


def test_receipt_payload_is_canonical():
    payload = receipt_payload("devs", ROOT, ISSUED)
    assert payload == (
        b'{"generated_at":"2024-05-01T12:00:00+00:00","group":"devs","root":"' +
        ROOT.encode() + b'"}'
    )


def test_key_fingerprint_is_stable():
    assert key_fingerprint() == key_fingerprint()
    assert len(key_fingerprint()) == 16


def test_public_key_is_pem():
    assert public_key_pem().startswith("-----BEGIN PUBLIC KEY-----")


def test_signer_id_from_env(monkeypatch):
    monkeypatch.setenv("SIGNER_ID", "registry-eu-1")
    assert signer_id() == "registry-eu-1"


def test_key_file_read_on_first_use(tmp_path, monkeypatch):
    key = ec.generate_private_key(ec.SECP256R1())
    path = tmp_path / "signing.pem"
    path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ))
    monkeypatch.setenv("SIGNING_KEY_FILE", str(path))
    monkeypatch.setattr(signing, "_private_key", None)

    der = key.public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    assert key_fingerprint() == hashlib.sha256(der).hexdigest()[:16]
