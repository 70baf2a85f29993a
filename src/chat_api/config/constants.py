"""Application constants."""

DB_SESSION_DEPENDENCY_KEY = "db_session"
"""The name of the key used for dependency injecting the database session."""
USER_DEPENDENCY_KEY = "current_user"
"""The name of the key used for dependency injecting the current user."""
COMPLETION_CLIENT_STATE_KEY = "completion_client"
"""The app state key holding the upstream completion client."""
BILLING_CLIENT_STATE_KEY = "billing_client"
"""The app state key holding the payment provider client."""
API_PREFIX = "/api/v1"
"""Prefix shared by every versioned API route."""
HEALTH_ENDPOINT = "/health"
"""The endpoint to use for the service health check."""
REQUEST_ID_HEADER = "x-request-id"
"""Header carrying the caller supplied request id."""
