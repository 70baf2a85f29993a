# pylint: disable=[invalid-name,import-outside-toplevel]
from __future__ import annotations

from typing import TYPE_CHECKING

from litestar.di import Provide
from litestar.openapi.config import OpenAPIConfig
from litestar.openapi.plugins import ScalarRenderPlugin
from litestar.plugins import InitPluginProtocol

if TYPE_CHECKING:
    from litestar import Litestar
    from litestar.config.app import AppConfig

    from chat_api.lib.billing import BillingClient
    from chat_api.lib.completion import CompletionClient


class ApplicationCore(InitPluginProtocol):
    """Application core configuration plugin.

    This class is responsible for configuring the main Litestar application with our routes, guards, and various plugins

    Args:
        completion_client: Upstream completion client. Built from settings when omitted.
        billing_client: Payment provider client. Built from settings when omitted.
    """

    __slots__ = ("app_slug", "billing_client", "completion_client")
    app_slug: str

    def __init__(
        self,
        completion_client: CompletionClient | None = None,
        billing_client: BillingClient | None = None,
    ) -> None:
        self.completion_client = completion_client
        self.billing_client = billing_client

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Configure application for use with SQLAlchemy.

        Args:
            app_config: The :class:`AppConfig <litestar.config.app.AppConfig>` instance.
        """

        from uuid import UUID

        from advanced_alchemy.exceptions import RepositoryError
        from litestar.exceptions import HTTPException
        from litestar.security.jwt import Token

        from chat_api.__about__ import __version__ as current_version
        from chat_api.config import app as config
        from chat_api.config import constants, get_settings
        from chat_api.db import models as m
        from chat_api.domain.accounts import signals as account_signals
        from chat_api.domain.accounts.controllers import AccessController
        from chat_api.domain.accounts.deps import provide_user
        from chat_api.domain.accounts.guards import auth as jwt_auth
        from chat_api.domain.accounts.services import UserService
        from chat_api.domain.chat.controllers import ChatController, ConversationController
        from chat_api.domain.chat.pipeline import ChatPipeline
        from chat_api.domain.chat.services import ConversationService, MessageService
        from chat_api.domain.quota.services import UsageRecordService
        from chat_api.domain.subscription.controllers import SubscriptionController
        from chat_api.domain.subscription.services import SubscriptionService
        from chat_api.domain.system.controllers import SystemController
        from chat_api.lib.billing import BillingClient
        from chat_api.lib.completion import OpenAICompletionClient
        from chat_api.lib.exceptions import ApplicationError, exception_to_http_response
        from chat_api.lib.usage_policy import UsagePolicy
        from chat_api.server import plugins

        settings = get_settings()
        self.app_slug = settings.app.slug
        app_config.debug = settings.app.DEBUG
        # openapi
        app_config.openapi_config = OpenAPIConfig(
            title=settings.app.NAME,
            version=current_version,
            components=[jwt_auth.openapi_components],
            security=[jwt_auth.security_requirement],
            use_handler_docstrings=True,
            render_plugins=[ScalarRenderPlugin(version="latest")],
        )
        # jwt auth (updates openapi config)
        app_config = jwt_auth.on_app_init(app_config)
        # security
        app_config.cors_config = config.cors
        # plugins
        app_config.plugins.extend(
            [
                plugins.structlog,
                plugins.granian,
                plugins.alchemy,
            ],
        )

        # routes
        app_config.route_handlers.extend(
            [
                SystemController,
                AccessController,
                ChatController,
                ConversationController,
                SubscriptionController,
            ],
        )
        # signatures
        app_config.signature_namespace.update(
            {
                "Token": Token,
                "m": m,
                "UUID": UUID,
                "UserService": UserService,
                "ConversationService": ConversationService,
                "MessageService": MessageService,
                "UsageRecordService": UsageRecordService,
                "SubscriptionService": SubscriptionService,
                "ChatPipeline": ChatPipeline,
                "UsagePolicy": UsagePolicy,
                "BillingClient": BillingClient,
            },
        )
        # exception handling
        app_config.exception_handlers = {
            ApplicationError: exception_to_http_response,
            RepositoryError: exception_to_http_response,
            HTTPException: exception_to_http_response,
            Exception: exception_to_http_response,
        }
        # dependencies
        dependencies = {constants.USER_DEPENDENCY_KEY: Provide(provide_user)}
        app_config.dependencies.update(dependencies)
        # listeners
        app_config.listeners.extend(
            [account_signals.user_created_event_handler],
        )
        # upstream clients, shared by every request
        if self.completion_client is None:
            self.completion_client = OpenAICompletionClient(
                api_key=settings.ai.API_KEY,
                base_url=settings.ai.BASE_URL,
                timeout=settings.ai.TIMEOUT,
            )
        if self.billing_client is None:
            self.billing_client = BillingClient(
                secret_key=settings.stripe.SECRET_KEY,
                webhook_secret=settings.stripe.WEBHOOK_SECRET,
                price_ids={
                    m.SubscriptionTier.BASE: settings.stripe.BASE_PRICE_ID,
                    m.SubscriptionTier.PRO: settings.stripe.PRO_PRICE_ID,
                },
            )
        app_config.state[constants.COMPLETION_CLIENT_STATE_KEY] = self.completion_client
        app_config.state[constants.BILLING_CLIENT_STATE_KEY] = self.billing_client
        app_config.on_shutdown.append(self._close_clients)
        return app_config

    async def _close_clients(self, app: Litestar) -> None:
        """Release connections held by the upstream clients."""
        from chat_api.config import constants

        close = getattr(app.state.get(constants.COMPLETION_CLIENT_STATE_KEY), "close", None)
        if close is not None:
            await close()
