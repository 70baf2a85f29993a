"""URL constants for accounts domain."""

from chat_api.config.constants import API_PREFIX

ACCOUNT_BASE = f"{API_PREFIX}/auth"

ACCOUNT_REGISTER = f"{ACCOUNT_BASE}/register"
ACCOUNT_LOGIN = f"{ACCOUNT_BASE}/login"
ACCOUNT_REFRESH = f"{ACCOUNT_BASE}/refresh"
ACCOUNT_LOGOUT = f"{ACCOUNT_BASE}/logout"
ACCOUNT_PROFILE = f"{ACCOUNT_BASE}/me"
ACCOUNT_PROFILE_UPDATE = f"{ACCOUNT_BASE}/profile"
