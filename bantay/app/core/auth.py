"""
Acting-user context.

Every mutating service call receives an Actor value explicitly; nothing in
the service layer reads "the current user" from ambient state. The HTTP
layer builds the Actor from the directory entry named by the X-User-Id
header (token verification is done by the gateway in front of this API).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from bantay.app.core.errors import AuthorizationError

ALERT_ISSUER_ROLES = frozenset({"admin", "official"})
RESCUE_HANDLER_ROLES = frozenset({"admin", "official", "responder"})


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str
    name: str = ""

    def has_role(self, roles: Iterable[str]) -> bool:
        return self.role in roles


def require_role(actor: Actor, roles: Iterable[str], action: str) -> None:
    """Raise AuthorizationError unless actor holds one of roles."""
    if not actor.has_role(roles):
        raise AuthorizationError(action, actor.role)
