"""Identity reconciliation between optimistic and persisted messages."""

from .reconciler import IdentityMatcher, TailRoleMatcher, IdentityReconciler

__all__ = ["IdentityMatcher", "TailRoleMatcher", "IdentityReconciler"]
