from .access import AccessController

__all__ = ("AccessController",)
