"""
Permission Manager.

Decides whether a user may trigger speech. Rules are evaluated in a
fixed order and the first matching rule wins:

    1. blacklisted              -> deny  "blacklisted"
    2. voice assigned           -> allow "voice_assigned"
    3. allow_tts (whitelisted)  -> allow "whitelisted"
    4. team_level >= minimum    -> allow "team_level"
    5. otherwise                -> deny  "team_level_insufficient"

User rows are durable (KeyValueStore, key "user:<id>"). Decisions are
cached per user for cache_ttl_seconds; every mutation of a user drops
that user's cached decision.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Callable, Dict, List, Optional

from tts_relay.core.config import Defaults
from tts_relay.core.logging import debug, get_logger, info
from tts_relay.services.store import KeyValueStore
from tts_relay.tts.cache import TinyLRUCache

_LOG = get_logger("tts-relay.permissions")

USER_PREFIX = "user:"

REASON_BLACKLISTED = "blacklisted"
REASON_VOICE_ASSIGNED = "voice_assigned"
REASON_WHITELISTED = "whitelisted"
REASON_TEAM_LEVEL = "team_level"
REASON_TEAM_LEVEL_INSUFFICIENT = "team_level_insufficient"

USER_FILTERS = ("whitelisted", "blacklisted", "voice_assigned")


@dataclass
class UserPermission:
    """Durable per-user permission row."""
    user_id: str
    username: str
    allow_tts: bool = False
    assigned_voice_id: Optional[str] = None
    assigned_engine_id: Optional[str] = None
    language_preference: Optional[str] = None
    volume_gain: float = 1.0
    is_blacklisted: bool = False
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserPermission":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: str
    team_level: int = 0
    min_team_level: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"allowed": self.allowed, "reason": self.reason}


def evaluate(user: Optional[UserPermission], team_level: int, min_team_level: int) -> PermissionDecision:
    """Apply the rule order to a (possibly unknown) user."""
    if user is not None:
        if user.is_blacklisted:
            return PermissionDecision(False, REASON_BLACKLISTED, team_level, min_team_level)
        if user.assigned_voice_id:
            return PermissionDecision(True, REASON_VOICE_ASSIGNED, team_level, min_team_level)
        if user.allow_tts:
            return PermissionDecision(True, REASON_WHITELISTED, team_level, min_team_level)
    if team_level >= min_team_level:
        return PermissionDecision(True, REASON_TEAM_LEVEL, team_level, min_team_level)
    return PermissionDecision(False, REASON_TEAM_LEVEL_INSUFFICIENT, team_level, min_team_level)


class PermissionManager:
    """
    Permission rows plus a TTL decision cache.

    Args:
        store: Durable key-value store for user rows.
        cache_ttl_seconds: Decision cache lifetime.
        clock: Time source for the decision cache.
    """

    def __init__(
        self,
        store: KeyValueStore,
        cache_ttl_seconds: float = Defaults.PERMISSION_CACHE_TTL_SECONDS,
        max_cached_users: int = Defaults.RATE_LIMIT_MAX_USERS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._cache: TinyLRUCache[PermissionDecision] = TinyLRUCache(
            max_items=max_cached_users, ttl_seconds=cache_ttl_seconds, name="permissions", clock=clock,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Check
    # ─────────────────────────────────────────────────────────────────────────

    def check_permission(
        self,
        user_id: str,
        username: Optional[str] = None,
        team_level: int = 0,
        min_team_level: int = Defaults.TEAM_MIN_LEVEL,
    ) -> PermissionDecision:
        """
        Decide whether user_id may trigger speech.

        A cached decision is reused only if it was computed for the same
        team level and minimum.
        """
        cached = self._cache.get(user_id)
        if cached is not None and cached.team_level == team_level and cached.min_team_level == min_team_level:
            debug(_LOG, "cache_hit", user=user_id, reason=cached.reason)
            return cached

        decision = evaluate(self.get_user(user_id), int(team_level), int(min_team_level))
        self._cache.set(user_id, decision)
        debug(_LOG, "evaluated", user=user_id, username=username or user_id,
              allowed=decision.allowed, reason=decision.reason)
        return decision

    # ─────────────────────────────────────────────────────────────────────────
    # Rows
    # ─────────────────────────────────────────────────────────────────────────

    def get_user(self, user_id: str) -> Optional[UserPermission]:
        data = self._store.get(USER_PREFIX + user_id)
        if data is None:
            return None
        return UserPermission.from_dict(data)

    def _save(self, user: UserPermission) -> None:
        user.updated_at = time.time()
        self._store.set(USER_PREFIX + user.user_id, user.to_dict())
        self._cache.delete(user.user_id)

    def _upsert(self, user_id: str, username: Optional[str], **changes: Any) -> UserPermission:
        user = self.get_user(user_id) or UserPermission(user_id=user_id, username=username or user_id)
        if username:
            user.username = username
        for key, value in changes.items():
            setattr(user, key, value)
        self._save(user)
        return user

    def allow(self, user_id: str, username: Optional[str] = None) -> UserPermission:
        info(_LOG, "user_allowed", user=user_id)
        return self._upsert(user_id, username, allow_tts=True)

    def deny(self, user_id: str, username: Optional[str] = None) -> UserPermission:
        info(_LOG, "user_denied", user=user_id)
        return self._upsert(user_id, username, allow_tts=False)

    def blacklist(self, user_id: str, username: Optional[str] = None) -> UserPermission:
        info(_LOG, "user_blacklisted", user=user_id)
        return self._upsert(user_id, username, is_blacklisted=True)

    def unblacklist(self, user_id: str) -> bool:
        user = self.get_user(user_id)
        if user is None:
            return False
        user.is_blacklisted = False
        self._save(user)
        info(_LOG, "user_unblacklisted", user=user_id)
        return True

    def assign_voice(
        self,
        user_id: str,
        username: Optional[str],
        voice_id: str,
        engine_id: Optional[str] = None,
    ) -> UserPermission:
        info(_LOG, "voice_assigned", user=user_id, voice=voice_id, engine=engine_id or "-")
        return self._upsert(user_id, username, assigned_voice_id=voice_id, assigned_engine_id=engine_id)

    def remove_voice(self, user_id: str) -> bool:
        user = self.get_user(user_id)
        if user is None:
            return False
        user.assigned_voice_id = None
        user.assigned_engine_id = None
        self._save(user)
        info(_LOG, "voice_removed", user=user_id)
        return True

    def set_volume_gain(self, user_id: str, username: Optional[str], gain: float) -> UserPermission:
        if gain < 0:
            raise ValueError(f"volume_gain must be non-negative, got {gain}")
        return self._upsert(user_id, username, volume_gain=float(gain))

    def set_language_preference(self, user_id: str, username: Optional[str], lang: Optional[str]) -> UserPermission:
        return self._upsert(user_id, username, language_preference=lang or None)

    def delete_user(self, user_id: str) -> bool:
        self._cache.delete(user_id)
        deleted = self._store.delete(USER_PREFIX + user_id)
        if deleted:
            info(_LOG, "user_deleted", user=user_id)
        return deleted

    # ─────────────────────────────────────────────────────────────────────────
    # Listing
    # ─────────────────────────────────────────────────────────────────────────

    def list_users(self, filter: Optional[str] = None) -> List[UserPermission]:
        """
        All user rows, optionally filtered.

        Raises:
            ValueError: On an unknown filter name.
        """
        if filter is not None and filter not in USER_FILTERS:
            raise ValueError(f"unknown filter {filter!r}; expected one of {', '.join(USER_FILTERS)}")

        users = [UserPermission.from_dict(v) for _, v in self._store.items(USER_PREFIX)]
        if filter == "whitelisted":
            users = [u for u in users if u.allow_tts]
        elif filter == "blacklisted":
            users = [u for u in users if u.is_blacklisted]
        elif filter == "voice_assigned":
            users = [u for u in users if u.assigned_voice_id]
        return sorted(users, key=lambda u: u.updated_at, reverse=True)

    def stats(self) -> Dict[str, Any]:
        users = self.list_users()
        return {
            "total_users": len(users),
            "whitelisted": sum(1 for u in users if u.allow_tts),
            "blacklisted": sum(1 for u in users if u.is_blacklisted),
            "voice_assigned": sum(1 for u in users if u.assigned_voice_id),
            "cache": self._cache.stats(),
        }

    def clear_cache(self) -> int:
        return self._cache.clear()
