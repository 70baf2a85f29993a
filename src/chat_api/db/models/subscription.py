import enum


class SubscriptionTier(str, enum.Enum):
    """Paid plan a user is on."""
    FREE = "FREE"
    BASE = "BASE"
    PRO = "PRO"


class SubscriptionStatus(str, enum.Enum):
    """Billing state of a user's subscription as reported by the payment provider."""
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    PAST_DUE = "PAST_DUE"
    TRIALING = "TRIALING"
    INACTIVE = "INACTIVE"
