"""
auth/scope.py -- Effective permission scope for a user.

The scope list is ordered:
  1. the role name (other code relies on scope[0] being the role)
  2. effective permissions in name order; denied ones are prefixed with "-"
  3. "user-<id>", the user's own document scope

Role grants are the baseline. A user override replaces the role's verdict
for that permission:
  Included  -> granted
  Excluded  -> dropped (neither granted nor denied)
  Forbidden -> denied, even if the role grants it
"""

from __future__ import annotations

from auth.models import User
from auth.store import AuthStore
from core.constants import PermissionState


def get_scope(store: AuthStore, user: User) -> list[str]:
    effective: dict[str, bool] = {}
    if user.role_id is not None:
        for grant in store.get_role_grants(user.role_id):
            effective[grant.name] = grant.enabled

    if user.id is not None:
        for grant in store.get_user_grants(user.id):
            if grant.state == PermissionState.INCLUDED.value:
                effective[grant.name] = True
            elif grant.state == PermissionState.FORBIDDEN.value:
                effective[grant.name] = False
            elif grant.state == PermissionState.EXCLUDED.value:
                effective.pop(grant.name, None)

    scope: list[str] = []
    if user.role_name:
        scope.append(user.role_name)
    for name in sorted(effective):
        scope.append(name if effective[name] else f"-{name}")
    if user.id is not None:
        scope.append(f"user-{user.id}")
    return scope
