"""
authority/policy.py -- Pure authorization decisions.

Rules, evaluated in order:
  1. Self-service: the actor targets their own username with an action in
     the self-service set -> ALLOW, regardless of authority.
  2. Administrative override: ADMIN actors -> ALLOW for any action on any
     target, including themselves and other admins.
  3. Anything else -> DENY.

Only CHANGE_PASSWORD is self-service by default. A USER changing their own
authority (self-escalation) or deleting their own account is denied unless a
deployment opts in via SELF_SERVICE_ACTIONS.

No I/O, no store access, no logging. Callers log denials.
"""

from __future__ import annotations

from collections.abc import Iterable

from authority.models import Action, Decision, Identity

DEFAULT_SELF_SERVICE_ACTIONS = frozenset({Action.CHANGE_PASSWORD})


class AuthorizationPolicy:
    def __init__(self, self_service_actions: Iterable[Action | str] = DEFAULT_SELF_SERVICE_ACTIONS) -> None:
        self.self_service_actions = frozenset(Action(a) for a in self_service_actions)

    def authorize(self, actor: Identity, action: Action, target: str) -> Decision:
        if actor.username == target and action in self.self_service_actions:
            return Decision.ALLOW
        if actor.is_admin:
            return Decision.ALLOW
        return Decision.DENY


_default_policy = AuthorizationPolicy()


def authorize(actor: Identity, action: Action, target: str) -> Decision:
    """Decide with the default rule set (self-service password change only)."""
    return _default_policy.authorize(actor, action, target)
