"""URL constants for chat domain."""

from chat_api.config.constants import API_PREFIX

CHAT_BASE = f"{API_PREFIX}/chat"

CHAT_SEND = f"{CHAT_BASE}/send"
CHAT_USAGE = f"{CHAT_BASE}/usage"

CONVERSATIONS_LIST = f"{CHAT_BASE}/conversations"
CONVERSATIONS_DETAIL = f"{CHAT_BASE}/conversations/{{conversation_id:uuid}}"
CONVERSATIONS_DELETE = f"{CHAT_BASE}/conversations/{{conversation_id:uuid}}"
CONVERSATIONS_TITLE = f"{CHAT_BASE}/conversations/{{conversation_id:uuid}}/title"
