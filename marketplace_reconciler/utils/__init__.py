"""Utility helpers for the reconciler."""

from marketplace_reconciler.utils.locks import KeyedLock, get_subscription_locks

__all__ = [
    "KeyedLock",
    "get_subscription_locks",
]
