from __future__ import annotations

from dataclasses import dataclass

from points_derby.errors import Unauthenticated

ROLE_PLAYER = "player"
ROLE_MANAGER = "manager"
ROLES = (ROLE_PLAYER, ROLE_MANAGER)


@dataclass(frozen=True)
class CallerContext:
    """An already-verified caller. Core operations trust it verbatim."""

    user_id: str
    role: str = ROLE_PLAYER

    def __post_init__(self) -> None:
        if not self.user_id:
            raise Unauthenticated("Caller has no user id.")
        if self.role not in ROLES:
            raise Unauthenticated(f"Unknown role '{self.role}'.")


def resolve_caller(interaction) -> CallerContext:
    """
    Maps a Discord interaction to a caller. Guild administrators act as
    managers; everyone else is a player.
    """
    user = getattr(interaction, "user", None)
    if user is None or getattr(user, "id", None) is None:
        raise Unauthenticated("Could not identify you. Please try again.")
    if getattr(user, "bot", False):
        raise Unauthenticated("Bots cannot play.")

    permissions = getattr(user, "guild_permissions", None)
    is_admin = bool(getattr(permissions, "administrator", False))
    return CallerContext(user_id=str(user.id), role=ROLE_MANAGER if is_admin else ROLE_PLAYER)
