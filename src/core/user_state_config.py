"""
User runtime state constants: cache key scheme, presence modes, username policy.

Key prefixes must stay byte-for-byte stable - external inspection tooling reads
the same keys (e.g. `redis-cli GET cud:u1`).

To adjust TTLs or batch limits per deployment, use the Settings fields that
feed UserStateConfig rather than editing the defaults here.
"""
import re
from dataclasses import dataclass
from enum import StrEnum


class KeyPrefix(StrEnum):
    """Cache tier key prefixes."""

    CRITICAL_USER_DATA = "cud:"
    PRESENCE_SUMMARY_USER = "presence:summary:user:"
    PRESENCE_OVERRIDE_USER = "presence:override:user:"
    USERNAME_TO_UID = "username:to:uid:"
    UID_TO_USERNAME = "uid:to:username:"


class PresenceMode(StrEnum):
    """Explicit presence override set by the user or the system."""

    REAL = "real"  # no override, derive from heartbeats
    AWAY = "away"
    OFFLINE = "offline"


class PresenceStatus(StrEnum):
    """Resolved presence status exposed to UI surfaces."""

    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"


@dataclass(frozen=True)
class UsernamePolicy:
    """Format policy applied to normalized usernames."""

    min_length: int
    max_length: int
    pattern: re.Pattern[str]


USERNAME_POLICY = UsernamePolicy(
    min_length=3,
    max_length=30,
    pattern=re.compile(r"^[a-zA-Z0-9._-]{3,30}$"),
)

# Identifiers are opaque, but bound their size before they reach a key or a query
MAX_USER_ID_LENGTH = 64

# Value written to the heartbeat summary key; only its presence matters
PRESENCE_SUMMARY_MARKER = "1"


@dataclass(frozen=True)
class UserStateConfig:
    """Timing and fan-out limits shared read-only by all user state components."""

    presence_ttl_seconds: int = 300
    bundle_ttl_seconds: int = 300
    activity_throttle_seconds: int = 60
    max_presence_batch: int = 500
    max_bundle_batch: int = 200


DEFAULT_USER_STATE_CONFIG = UserStateConfig()


def normalize_username(username: str | None) -> str:
    """Trim and lowercase a username. None normalizes to an empty string."""
    return (username or "").strip().lower()


def critical_user_data_key(uid: str) -> str:
    """Cache key for a user's critical data bundle."""
    return f"{KeyPrefix.CRITICAL_USER_DATA}{uid}"


def presence_summary_key(uid: str) -> str:
    """Cache key for a user's heartbeat summary marker."""
    return f"{KeyPrefix.PRESENCE_SUMMARY_USER}{uid}"


def presence_override_key(uid: str) -> str:
    """Cache key for a user's presence override mode."""
    return f"{KeyPrefix.PRESENCE_OVERRIDE_USER}{uid}"


def username_to_uid_key(username: str) -> str:
    """Forward registry key. The username is normalized before it is embedded."""
    return f"{KeyPrefix.USERNAME_TO_UID}{normalize_username(username)}"


def uid_to_username_key(uid: str) -> str:
    """Reverse registry mirror key."""
    return f"{KeyPrefix.UID_TO_USERNAME}{uid}"
