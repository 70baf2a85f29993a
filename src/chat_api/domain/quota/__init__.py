"""Usage quota domain logic."""

from . import deps, guards, services

__all__ = ("deps", "guards", "services")
