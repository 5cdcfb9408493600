"""
Signing policy model.

PayFast's documentation has been read two ways by working integrations:
some sign the merchant_key field, some leave it out; some percent-encode
the passphrase before appending it, some append it raw. The policy makes
both choices explicit so a deployment can match its merchant account.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet

SIGNATURE_FIELD = 'signature'
MERCHANT_KEY_FIELD = 'merchant_key'


@dataclass(frozen=True)
class SigningPolicy:
    """
    Which fields are signed and how the passphrase is appended.

    Attributes:
        include_merchant_key: Sign merchant_key along with the other fields
        encode_passphrase: Percent-encode the passphrase before hashing
        extra_exclusions: Further provider-specific fields left out of signing
    """

    include_merchant_key: bool = True
    encode_passphrase: bool = True
    extra_exclusions: FrozenSet[str] = frozenset()

    def excluded_keys(self) -> FrozenSet[str]:
        """Keys dropped before building the canonical string."""
        keys = {SIGNATURE_FIELD} | set(self.extra_exclusions)
        if not self.include_merchant_key:
            keys.add(MERCHANT_KEY_FIELD)
        return frozenset(keys)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'include_merchant_key': self.include_merchant_key,
            'encode_passphrase': self.encode_passphrase,
            'extra_exclusions': sorted(self.extra_exclusions)
        }


# merchant_key signed, passphrase percent-encoded
SIGN_ALL_FIELDS = SigningPolicy()

# merchant_key transmitted but left out of the signature
SKIP_MERCHANT_KEY = SigningPolicy(include_merchant_key=False)
