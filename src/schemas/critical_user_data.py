"""Pydantic schemas for the critical user data bundle and resolved presence."""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from core.user_state_config import PresenceStatus


class PresenceState(BaseModel):
    """Resolved presence. Derived at read time, never stored as a document."""

    model_config = ConfigDict(frozen=True)

    online: bool
    status: PresenceStatus

    @classmethod
    def offline(cls) -> "PresenceState":
        """Presence for unknown users and for degraded reads."""
        return cls(online=False, status=PresenceStatus.OFFLINE)


class CriticalUserData(BaseModel):
    """
    Small denormalized per-user record used by UI surfaces.

    Cached under cud:{uid} as camelCase JSON:
        {"username": "alice", "displayName": "Alice Doe", "avatar": "/a.png",
         "online": false, "status": "offline"}

    username, display_name and avatar come from the users row. online and
    status are recomputed from the presence resolver on every read; the cached
    copies are only written for external inspection tooling and are never
    returned as-is.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    username: str = ""
    display_name: str = ""
    avatar: str = ""
    online: bool = False
    status: PresenceStatus = PresenceStatus.OFFLINE

    @classmethod
    def placeholder(cls) -> "CriticalUserData":
        """Empty-shaped bundle used in batch results for unknown users."""
        return cls()

    def with_presence(self, presence: PresenceState) -> "CriticalUserData":
        """Copy of this bundle with the presence fields overwritten."""
        return self.model_copy(update={"online": presence.online, "status": presence.status})

    def to_cache(self) -> str:
        """Serialize for the cache tier."""
        return self.model_dump_json(by_alias=True)
