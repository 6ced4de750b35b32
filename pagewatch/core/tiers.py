"""Subscription tiers and the limits attached to them."""

from enum import Enum
from typing import Dict, Optional

from .types import Frequency


class Tier(str, Enum):
    """Subscription level of a monitor owner."""
    FREE = "free"
    PRO = "pro"
    POWER = "power"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Tier":
        """Map a stored tier string to a Tier, defaulting to free."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.FREE


# Consecutive failures before a monitor is auto-paused
PAUSE_THRESHOLDS: Dict[Tier, int] = {
    Tier.FREE: 3,
    Tier.PRO: 5,
    Tier.POWER: 10,
}

# Render calls per calendar month
RENDER_MONTHLY_CAPS: Dict[Tier, int] = {
    Tier.FREE: 0,
    Tier.PRO: 200,
    Tier.POWER: 500,
}

# Notification emails per calendar day per user, None means no per-user cap
EMAIL_DAILY_CAPS: Dict[Tier, Optional[int]] = {
    Tier.FREE: 1,
    Tier.PRO: None,
    Tier.POWER: None,
}

# Most frequent schedule each tier may use
FASTEST_FREQUENCY: Dict[Tier, Frequency] = {
    Tier.FREE: Frequency.DAILY,
    Tier.PRO: Frequency.HOURLY,
    Tier.POWER: Frequency.HOURLY,
}


def pause_threshold(tier) -> int:
    return PAUSE_THRESHOLDS[Tier.parse(tier)]


def effective_frequency(tier, frequency: Frequency) -> Frequency:
    """Clamp a stored frequency to what the tier allows."""
    fastest = FASTEST_FREQUENCY[Tier.parse(tier)]
    if fastest.interval > frequency.interval:
        return fastest
    return frequency
