"""
Account data model.

Represents the subscriber's entitlement as stored in the account store.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Plan(str, Enum):
    """Subscription plans."""
    FREE = "free"
    PRO = "pro"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Normalise a stored timestamp to an aware UTC datetime.

    SQLite hands back ISO strings, PostgreSQL hands back datetimes.
    """
    if value is None or value == '':
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Account:
    """
    Entitlement record for one user.

    Attributes:
        id: User identifier issued by the identity provider
        email: Email address, if known
        plan: Stored plan
        pro_until: End of the paid window, or None
    """

    id: str
    email: Optional[str] = None
    plan: Plan = Plan.FREE
    pro_until: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.plan, str):
            self.plan = Plan(self.plan) if self.plan in ('free', 'pro') else Plan.FREE
        self.pro_until = parse_timestamp(self.pro_until)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        """Create Account from a database row."""
        return cls(
            id=data['id'],
            email=data.get('email'),
            plan=data.get('plan') or Plan.FREE,
            pro_until=data.get('pro_until')
        )

    def effective_plan(self, now: Optional[datetime] = None) -> Plan:
        """
        Plan in force at ``now``.

        A pro plan whose window has closed reads as free.
        """
        if self.plan != Plan.PRO:
            return Plan.FREE
        if self.pro_until is None:
            return Plan.PRO
        now = now or datetime.now(timezone.utc)
        return Plan.PRO if self.pro_until > now else Plan.FREE

    def to_public_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            'plan': self.effective_plan(now).value,
            'proUntil': self.pro_until.isoformat() if self.pro_until else None
        }
