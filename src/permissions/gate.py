"""Access gate: turns engine answers into route and element decisions.

Route guard order: unauthenticated → REDIRECT_TO_LOGIN; data still loading
→ LOADING (never a premature deny); otherwise ALLOW or DENY with a message
naming what is missing. Element guards are silent: HIDE (or SHOW_FALLBACK)
and never redirect. A module requirement without an action means read
access (`module.read`) for elements.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from src.permissions.session import SessionContext

logger = logging.getLogger(__name__)

DEFAULT_DENY_MESSAGE = "You do not have permission to access this section"
ELEMENT_DEFAULT_ACTION = "read"


class RouteOutcome(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"
    REDIRECT_TO_LOGIN = "redirect_to_login"
    LOADING = "loading"


class ElementOutcome(str, enum.Enum):
    SHOW = "show"
    HIDE = "hide"
    SHOW_FALLBACK = "show_fallback"


@dataclass(frozen=True)
class AccessRequirement:
    """What a route or element needs. At most one kind may be given.

    - permission: a single permission name
    - permissions (+ require_all): a list, ANY by default, ALL if require_all
    - module (+ action): module.action, or any permission under the module
    An empty requirement only asks for authentication.
    """

    permission: str | None = None
    permissions: tuple[str, ...] = ()
    require_all: bool = False
    module: str | None = None
    action: str | None = None

    def __post_init__(self) -> None:
        kinds = sum(bool(k) for k in (self.permission, self.permissions, self.module))
        if kinds > 1:
            raise ValueError(
                "Specify only one of permission, permissions or module in an access requirement"
            )
        if self.action and not self.module:
            raise ValueError("action requires module")
        if not isinstance(self.permissions, tuple):
            object.__setattr__(self, "permissions", tuple(self.permissions))

    @property
    def is_empty(self) -> bool:
        return not (self.permission or self.permissions or self.module)

    def describe(self) -> str:
        if self.permission:
            return self.permission
        if self.permissions:
            joiner = " and " if self.require_all else " or "
            return joiner.join(self.permissions)
        if self.module:
            return f"{self.module}.{self.action}" if self.action else self.module
        return "authenticated"


@dataclass(frozen=True)
class RouteDecision:
    outcome: RouteOutcome
    message: str = ""
    fallback_path: str = "/login"

    @property
    def allowed(self) -> bool:
        return self.outcome is RouteOutcome.ALLOW


class AccessGate:
    """Route and element guards over session-bound permission queries."""

    def __init__(self, login_path: str = "/login") -> None:
        self._login_path = login_path

    def check_route(
        self,
        session: SessionContext | None,
        requirement: AccessRequirement,
        fallback_path: str | None = None,
    ) -> RouteDecision:
        fallback = fallback_path or self._login_path
        if session is None or not session.is_authenticated:
            return RouteDecision(RouteOutcome.REDIRECT_TO_LOGIN, fallback_path=fallback)

        if session.is_loading:
            return RouteDecision(
                RouteOutcome.LOADING, "Checking permissions...", fallback_path=fallback
            )

        if _satisfies(session, requirement):
            return RouteDecision(RouteOutcome.ALLOW, fallback_path=fallback)

        message = deny_message(requirement)
        logger.info(
            "Route access denied: %s",
            requirement.describe(),
            extra={
                "user_id": session.user.id,
                "session_id": session.session_id,
                "permission": requirement.describe(),
                "outcome": RouteOutcome.DENY.value,
            },
        )
        return RouteDecision(RouteOutcome.DENY, message, fallback_path=fallback)

    def check_element(
        self,
        session: SessionContext | None,
        requirement: AccessRequirement,
        show_fallback: bool = False,
    ) -> ElementOutcome:
        hidden = ElementOutcome.SHOW_FALLBACK if show_fallback else ElementOutcome.HIDE
        if session is None or not session.is_authenticated or session.is_loading:
            return hidden

        if requirement.module and not requirement.action:
            requirement = AccessRequirement(module=requirement.module, action=ELEMENT_DEFAULT_ACTION)

        return ElementOutcome.SHOW if _satisfies(session, requirement) else hidden


def _satisfies(session: SessionContext, requirement: AccessRequirement) -> bool:
    if requirement.permission:
        return session.has_permission(requirement.permission)
    if requirement.permissions:
        if requirement.require_all:
            return session.has_all_permissions(requirement.permissions)
        return session.has_any_permission(requirement.permissions)
    if requirement.module:
        return session.can_access(requirement.module, requirement.action)
    return True


def deny_message(requirement: AccessRequirement) -> str:
    """Human-readable reason naming the missing permission, list or module."""
    if requirement.permission:
        return f"You need the permission '{requirement.permission}' to access this section"
    if requirement.permissions:
        names = ", ".join(requirement.permissions)
        if requirement.require_all:
            return f"You need all of these permissions: {names}"
        return f"You need at least one of these permissions: {names}"
    if requirement.module:
        return f"You do not have access to the module '{requirement.describe()}'"
    return DEFAULT_DENY_MESSAGE
