"""System domain logic."""

from . import controllers, schemas

__all__ = ("controllers", "schemas")
