# pylint: disable=[invalid-name,import-outside-toplevel]
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from litestar import Litestar

    from chat_api.lib.billing import BillingClient
    from chat_api.lib.completion import CompletionClient


def create_app(
    completion_client: CompletionClient | None = None,
    billing_client: BillingClient | None = None,
) -> Litestar:
    """Create ASGI application.

    Args:
        completion_client: Overrides the upstream completion client built from settings.
        billing_client: Overrides the payment provider client built from settings.
    """

    from litestar import Litestar

    from chat_api.server import plugins
    from chat_api.server.core import ApplicationCore

    return Litestar(
        plugins=[
            plugins.pydantic,
            ApplicationCore(completion_client=completion_client, billing_client=billing_client),
        ],
    )
