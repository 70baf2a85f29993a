"""Dependency providers for quota domain."""

from __future__ import annotations

from chat_api.domain.quota.services import UsageRecordService
from chat_api.lib.deps import create_service_provider
from chat_api.lib.usage_policy import UsagePolicy

__all__ = ("provide_usage_policy", "provide_usage_record_service")

provide_usage_record_service = create_service_provider(
    UsageRecordService,
    error_messages={"integrity": "Usage record operation failed."},
)


def provide_usage_policy() -> UsagePolicy:
    return UsagePolicy()
