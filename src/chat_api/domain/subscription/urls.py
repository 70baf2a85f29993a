"""URL constants for subscription domain."""

from chat_api.config.constants import API_PREFIX

SUBSCRIPTION_BASE = f"{API_PREFIX}/subscription"

SUBSCRIPTION_CHECKOUT = f"{SUBSCRIPTION_BASE}/create-checkout-session"
SUBSCRIPTION_PORTAL = f"{SUBSCRIPTION_BASE}/create-portal-session"
SUBSCRIPTION_STATUS = f"{SUBSCRIPTION_BASE}/status"
SUBSCRIPTION_CANCEL = f"{SUBSCRIPTION_BASE}/cancel"
SUBSCRIPTION_RESUME = f"{SUBSCRIPTION_BASE}/resume"
SUBSCRIPTION_WEBHOOK = f"{SUBSCRIPTION_BASE}/webhook"
