"""Timing-safe HMAC verification for webhook signatures.

Used for providers that sign the raw body with a shared secret and send a
hex digest in a header (the banking aggregator and custom integrations).
Stripe events go through the Stripe SDK instead, which performs the same
constant-time comparison internally.

Contract:
- The payload must be the exact bytes the sender signed. Re-serializing a
  parsed JSON body invalidates the signature.
- verify_signature() never raises. Every failure is reported as a
  VerificationResult with a reason, so callers can log the reason and
  answer the sender with a generic rejection.
- Digests are compared with hmac.compare_digest() on equal-length byte
  buffers; the length check happens first.
"""

import hashlib
import hmac
import re
from dataclasses import dataclass
from enum import StrEnum

from app.core.exceptions import UnsupportedAlgorithmError

# Longest prefix made of whole hex byte pairs
_HEX_PAIRS = re.compile(r"(?:[0-9a-fA-F]{2})*")


class HashAlgorithm(StrEnum):
    SHA256 = "sha256"
    SHA512 = "sha512"
    SHA1 = "sha1"  # legacy senders only


_DIGESTS = {
    HashAlgorithm.SHA256: hashlib.sha256,
    HashAlgorithm.SHA512: hashlib.sha512,
    HashAlgorithm.SHA1: hashlib.sha1,
}


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a signature check. ``error`` is set iff ``verified`` is False."""

    verified: bool
    error: str | None = None


def _resolve_digest(algorithm: str | HashAlgorithm):
    try:
        return _DIGESTS[HashAlgorithm(algorithm)]
    except ValueError as exc:
        raise UnsupportedAlgorithmError(str(algorithm)) from exc


def _decode_hex(value: str) -> bytes:
    """Decode hex leniently: stop at the first character that is not part of a byte pair.

    A malformed signature therefore decodes to a shorter buffer and fails the
    length check instead of raising.
    """
    return bytes.fromhex(_HEX_PAIRS.match(value).group())


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def verify_signature(
    payload: str | bytes,
    signature: str,
    secret: str | bytes,
    algorithm: str | HashAlgorithm = HashAlgorithm.SHA256,
) -> VerificationResult:
    """Verify a hex-encoded HMAC signature over a raw payload.

    Args:
        payload: Raw request body exactly as received
        signature: Hex digest supplied by the sender
        secret: Shared signing key
        algorithm: sha256 (default), sha512 or sha1

    Returns:
        VerificationResult; ``error`` is one of "Payload cannot be empty",
        "Signature cannot be empty", "Secret cannot be empty",
        "Signature length mismatch", "Invalid signature" or
        "Verification failed: <detail>".
    """
    if not payload:
        return VerificationResult(verified=False, error="Payload cannot be empty")
    if not signature:
        return VerificationResult(verified=False, error="Signature cannot be empty")
    if not secret:
        return VerificationResult(verified=False, error="Secret cannot be empty")

    try:
        digest = _resolve_digest(algorithm)
        expected_hex = hmac.new(_to_bytes(secret), _to_bytes(payload), digest).hexdigest()

        expected = bytes.fromhex(expected_hex)
        actual = _decode_hex(signature)

        # compare_digest is only constant-time for equal-length inputs
        if len(expected) != len(actual):
            return VerificationResult(verified=False, error="Signature length mismatch")

        if hmac.compare_digest(expected, actual):
            return VerificationResult(verified=True)
        return VerificationResult(verified=False, error="Invalid signature")
    except Exception as exc:
        return VerificationResult(verified=False, error=f"Verification failed: {exc}")
