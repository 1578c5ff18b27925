"""
authority/service.py -- Policy-checked credential administration.

Every mutating operation follows the same four steps:
  1. resolve the actor from their session token (Unauthenticated)
  2. ask the AuthorizationPolicy (Forbidden on DENY)
  3. apply a single-statement mutation to the CredentialStore
  4. report: a store miss becomes UserNotFound

The policy check runs before any existence check, so a non-admin probing
another username always gets Forbidden and learns nothing about whether the
account exists.

register() is the one unauthenticated operation. Side effects are confined to
the CredentialStore; hashing is delegated to the injected PasswordHasher.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from authority.exceptions import Forbidden, UserNotFound
from authority.hashing import PasswordHasher
from authority.models import Action, AuthorityLevel, Decision, Identity
from authority.policy import AuthorizationPolicy
from authority.sessions import SessionAuthenticator
from authority.store import CredentialStore

logger = logging.getLogger("credauthority.admin")


class CredentialAdministrationService:
    """Orchestrates registration and actor-gated credential mutations.

    Usage:
        service = CredentialAdministrationService(store, hasher, authenticator, AuthorizationPolicy())
        service.register("alice", "pw")
        token = authenticator.login("alice", "pw")
        service.change_password(token.value, "alice", "new-pw")
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        authenticator: SessionAuthenticator,
        policy: AuthorizationPolicy,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.authenticator = authenticator
        self.policy = policy

    # ------------------------------------------------------------------
    # Unauthenticated
    # ------------------------------------------------------------------

    def register(self, username: str, password: str, authority: AuthorityLevel = AuthorityLevel.USER) -> Identity:
        """Create a credential. Raises DuplicateUsername on collision.

        The authority argument exists for operator tooling (the admin CLI);
        the public HTTP route always registers USER accounts.
        """
        credential = self.store.create(username, self.hasher.hash(password), authority)
        logger.info("Registered %s (%s)", username, credential.authority.name)
        return credential.identity()

    # ------------------------------------------------------------------
    # Actor-gated mutations
    # ------------------------------------------------------------------

    def change_password(self, actor_token: str, target_username: str, new_password: str) -> None:
        actor = self._authorize(actor_token, Action.CHANGE_PASSWORD, target_username)
        if not self.store.update_password_hash(target_username, self.hasher.hash(new_password)):
            raise UserNotFound(target_username)
        logger.info("%s changed the password of %s", actor.username, target_username)

    def change_authority(self, actor_token: str, target_username: str, new_authority: AuthorityLevel) -> None:
        actor = self._authorize(actor_token, Action.CHANGE_AUTHORITY, target_username)
        if not self.store.update_authority(target_username, new_authority):
            raise UserNotFound(target_username)
        logger.info("%s set the authority of %s to %s", actor.username, target_username, new_authority.name)

    def delete_user(self, actor_token: str, target_username: str) -> None:
        actor = self._authorize(actor_token, Action.DELETE_USER, target_username)
        if not self.store.delete(target_username):
            raise UserNotFound(target_username)
        logger.info("%s deleted %s", actor.username, target_username)

    def _authorize(self, actor_token: str, action: Action, target_username: str) -> Identity:
        actor = self.authenticator.resolve(actor_token)
        if self.policy.authorize(actor, action, target_username) is Decision.DENY:
            logger.warning("Denied %s by %s on %s", action.value, actor.username, target_username)
            raise Forbidden(f"{actor.username} may not {action.value.replace('_', ' ')} for {target_username}")
        return actor
