from .subscription import SubscriptionController

__all__ = ("SubscriptionController",)
