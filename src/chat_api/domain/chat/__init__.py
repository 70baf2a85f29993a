"""Chat domain logic."""

from . import controllers, deps, events, pipeline, schemas, services, urls

__all__ = ("controllers", "deps", "events", "pipeline", "schemas", "services", "urls")
