"""Team-scoped access control."""

from teamauth.core.rbac.policy import AccessChecker, AccessPolicy

__all__ = ["AccessChecker", "AccessPolicy"]
