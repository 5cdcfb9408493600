"""
PayFast signature construction.

Both sides of the protocol must derive the same string from the same field
set, so everything here is a pure function of its arguments.
"""

import hashlib
import hmac
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import quote

from models.signing import SIGNATURE_FIELD, SigningPolicy

# Characters encodeURIComponent leaves alone besides alphanumerics and "-_.~"
_SAFE = "!*'()"


def encode_component(value: str) -> str:
    """
    Percent-encode a value as a URL component.

    UTF-8 bytes are escaped with uppercase hex and spaces become %20.
    """
    return quote(value, safe=_SAFE, encoding='utf-8')


def _clean(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def build_canonical_string(
    fields: Mapping[str, Any],
    excluded_keys: Iterable[str] = (SIGNATURE_FIELD,)
) -> str:
    """
    Serialise a field set into the string that gets hashed.

    Args:
        fields: Field name to value
        excluded_keys: Keys left out of the string

    Returns:
        Sorted ``key=value`` pairs joined with ``&``; empty and
        whitespace-only values are dropped and the rest are trimmed and
        percent-encoded
    """
    excluded = set(excluded_keys)

    keys = sorted(
        k for k in fields
        if k not in excluded and _clean(fields[k])
    )

    return '&'.join(f"{k}={encode_component(_clean(fields[k]))}" for k in keys)


def sign(canonical: str, passphrase: Optional[str] = None, encode_passphrase: bool = True) -> str:
    """
    Hash a canonical string.

    Args:
        canonical: Output of build_canonical_string
        passphrase: Shared secret; appended only when non-blank
        encode_passphrase: Percent-encode the passphrase before appending

    Returns:
        32-character lowercase MD5 hex digest
    """
    passphrase = _clean(passphrase)
    to_hash = canonical

    if passphrase:
        suffix = encode_component(passphrase) if encode_passphrase else passphrase
        to_hash = f"{canonical}&passphrase={suffix}"

    # MD5 is fixed by the gateway protocol
    return hashlib.md5(to_hash.encode('utf-8')).hexdigest()


def generate_signature(
    fields: Mapping[str, Any],
    passphrase: Optional[str] = None,
    policy: SigningPolicy = SigningPolicy()
) -> str:
    """
    Compute the signature for a field set under a signing policy.

    Args:
        fields: Field name to value (a signature field, if present, is ignored)
        passphrase: Shared secret held server-side
        policy: Exclusion and passphrase-encoding rules

    Returns:
        Hex-encoded MD5 signature
    """
    canonical = build_canonical_string(fields, policy.excluded_keys())
    return sign(canonical, passphrase, policy.encode_passphrase)


def verify_signature(
    fields: Mapping[str, Any],
    passphrase: Optional[str] = None,
    policy: SigningPolicy = SigningPolicy()
) -> bool:
    """
    Verify the signature carried inside a field set.

    Args:
        fields: Received fields including ``signature``
        passphrase: Shared secret held server-side
        policy: Exclusion and passphrase-encoding rules

    Returns:
        True if the signature matches
    """
    received = _clean(fields.get(SIGNATURE_FIELD))
    if not received:
        return False

    expected = generate_signature(fields, passphrase, policy)

    return hmac.compare_digest(expected.encode('utf-8'), received.encode('utf-8'))
