"""Session contexts: one per login, destroyed on logout.

A SessionContext binds the authenticated user (and the opaque token the
school backend issued) to the resolution engine, so call sites ask
`session.has_permission("users.delete")` without passing the user around.
After close() every query answers False.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterable

from src.permissions.engine import ResolutionEngine
from src.permissions.models import AuthenticatedUser
from src.permissions.overrides import UserOverride, UserOverrideStore

logger = logging.getLogger(__name__)


class SessionContext:
    """The authenticated user of one login plus bound permission queries."""

    def __init__(self, user: AuthenticatedUser, token: str, engine: ResolutionEngine) -> None:
        self.user = user
        self.token = token
        self.session_id = uuid.uuid4().hex
        self.created_at = time.time()
        self._engine = engine
        self._active = True

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_authenticated(self) -> bool:
        return self._active and self.user.is_authenticated

    @property
    def is_loading(self) -> bool:
        return self._engine.is_loading(self.user)

    def _subject(self) -> AuthenticatedUser | None:
        return self.user if self.is_authenticated else None

    def has_permission(self, name: str) -> bool:
        return self._engine.has_permission(self._subject(), name)

    def has_any_permission(self, names: Iterable[str]) -> bool:
        return self._engine.has_any_permission(self._subject(), names)

    def has_all_permissions(self, names: Iterable[str]) -> bool:
        return self._engine.has_all_permissions(self._subject(), names)

    def can_access(self, module: str, action: str | None = None) -> bool:
        return self._engine.can_access(self._subject(), module, action)

    def module_permissions(self, module: str) -> list[str]:
        return self._engine.module_permissions(self._subject(), module)

    def effective_permissions(self) -> frozenset[str]:
        return self._engine.effective_permissions(self._subject())

    # --- Roles ---

    def roles(self) -> tuple[str, ...]:
        return self._engine.roles(self._subject())

    @property
    def primary_role(self) -> str | None:
        roles = self.roles()
        return roles[0] if roles else None

    def has_role(self, name: str) -> bool:
        """Exact, case-sensitive role name match."""
        return name in self.roles()

    def has_any_role(self, names: Iterable[str]) -> bool:
        roles = self.roles()
        return any(name in roles for name in names)

    def close(self) -> None:
        self._active = False


class SessionManager:
    """Creates sessions on login and destroys them on logout."""

    def __init__(self, engine: ResolutionEngine, overrides: UserOverrideStore) -> None:
        self._engine = engine
        self._overrides = overrides
        self._by_token: dict[str, SessionContext] = {}
        self._user_gone: list[Callable[[str], None]] = []

    def on_user_gone(self, callback: Callable[[str], None]) -> None:
        """Call `callback(user_id)` when a user's last session is destroyed."""
        self._user_gone.append(callback)

    def create(self, user: AuthenticatedUser, token: str) -> SessionContext:
        existing = self._by_token.get(token)
        if existing is not None:
            existing.close()
        session = SessionContext(user, token, self._engine)
        self._by_token[token] = session
        logger.info(
            "Session created for role %s",
            user.role,
            extra={"user_id": user.id, "session_id": session.session_id},
        )
        return session

    def get(self, token: str) -> SessionContext | None:
        session = self._by_token.get(token)
        if session is None or not session.is_active:
            return None
        return session

    def destroy(self, token: str) -> bool:
        """Close the session; the user's overrides go when their last session does."""
        session = self._by_token.pop(token, None)
        if session is None:
            return False
        session.close()
        if not self.sessions_for(session.user.id):
            self._overrides.discard(session.user.id)
            for callback in self._user_gone:
                callback(session.user.id)
        logger.info(
            "Session destroyed",
            extra={"user_id": session.user.id, "session_id": session.session_id},
        )
        return True

    def sessions_for(self, user_id: str) -> list[SessionContext]:
        return [s for s in self._by_token.values() if s.user.id == user_id and s.is_active]

    def active(self) -> list[SessionContext]:
        return [s for s in self._by_token.values() if s.is_active]

    def overrides_for(self, session: SessionContext) -> UserOverride:
        return self._overrides.get_overrides(session.user.id)

    def clear(self) -> None:
        for token in list(self._by_token):
            self.destroy(token)
