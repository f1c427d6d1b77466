"""
Tests for the permission hierarchy.

Tests cover:
- Rule order: blacklist > voice assigned > whitelist > team level
- Unknown users gated by team level
- Decision cache: reuse, TTL expiry, invalidation on mutation
- Row operations: allow/deny/blacklist/unblacklist/assign/remove/delete
- list_users() filters, stats()
"""
import itertools

import pytest

from tts_relay.services.permissions import (
    PermissionManager,
    UserPermission,
    evaluate,
)
from tts_relay.services.store import InMemoryStore


@pytest.fixture
def manager(clock):
    return PermissionManager(InMemoryStore(), cache_ttl_seconds=60, clock=clock)


class TestEvaluate:
    """Pure rule evaluation."""

    def test_unknown_user_team_level_ok(self):
        decision = evaluate(None, team_level=0, min_team_level=0)
        assert decision.allowed is True
        assert decision.reason == "team_level"

    def test_unknown_user_team_level_insufficient(self):
        decision = evaluate(None, team_level=1, min_team_level=3)
        assert decision.allowed is False
        assert decision.reason == "team_level_insufficient"

    @pytest.mark.parametrize(
        "allow_tts,assigned_voice,team_level,min_team_level",
        list(itertools.product([False, True], [None, "v"], [0, 5], [0, 3])),
    )
    def test_blacklist_beats_every_flag_combination(self, allow_tts, assigned_voice, team_level, min_team_level):
        user = UserPermission("u1", "u1", allow_tts=allow_tts, assigned_voice_id=assigned_voice,
                              is_blacklisted=True)
        decision = evaluate(user, team_level=team_level, min_team_level=min_team_level)
        assert (decision.allowed, decision.reason) == (False, "blacklisted")

    def test_voice_assignment_bypasses_team_gate(self):
        user = UserPermission("u1", "u1", assigned_voice_id="v")
        decision = evaluate(user, team_level=0, min_team_level=5)
        assert (decision.allowed, decision.reason) == (True, "voice_assigned")

    def test_whitelist_bypasses_team_gate(self):
        user = UserPermission("u1", "u1", allow_tts=True)
        decision = evaluate(user, team_level=0, min_team_level=5)
        assert (decision.allowed, decision.reason) == (True, "whitelisted")

    def test_known_user_without_flags_uses_team_level(self):
        user = UserPermission("u1", "u1")
        assert evaluate(user, team_level=2, min_team_level=2).reason == "team_level"


class TestManager:
    """PermissionManager rows and cache."""

    def test_blacklist_denies(self, manager):
        manager.blacklist("u1", "viewer")
        decision = manager.check_permission("u1", "viewer", team_level=10, min_team_level=0)
        assert decision.allowed is False
        assert decision.reason == "blacklisted"

    def test_blacklist_wins_over_whitelist_and_voice(self, manager):
        manager.allow("u1")
        manager.assign_voice("u1", None, "google-en", "google")
        assert manager.check_permission("u1", team_level=0, min_team_level=5).reason == "voice_assigned"
        manager.blacklist("u1")
        decision = manager.check_permission("u1", team_level=9, min_team_level=0)
        assert (decision.allowed, decision.reason) == (False, "blacklisted")

    def test_mutation_invalidates_cache(self, manager):
        assert manager.check_permission("u1", team_level=0, min_team_level=0).allowed is True
        manager.blacklist("u1")
        assert manager.check_permission("u1", team_level=0, min_team_level=0).allowed is False
        assert manager.unblacklist("u1") is True
        assert manager.check_permission("u1", team_level=0, min_team_level=0).allowed is True

    def test_cached_decision_requires_same_inputs(self, manager):
        assert manager.check_permission("u1", team_level=5, min_team_level=3).allowed is True
        # Same user, lower level: must be re-evaluated, not served from cache
        assert manager.check_permission("u1", team_level=1, min_team_level=3).allowed is False

    def test_cache_hit_counted(self, manager):
        manager.check_permission("u1", team_level=0, min_team_level=0)
        manager.check_permission("u1", team_level=0, min_team_level=0)
        assert manager.stats()["cache"]["hits"] == 1

    def test_cache_ttl(self, manager, clock):
        manager.check_permission("u1", team_level=0, min_team_level=0)
        # Write the row behind the manager's back; cache still answers
        manager._store.set("user:u1", UserPermission("u1", "u1", is_blacklisted=True).to_dict())
        assert manager.check_permission("u1", team_level=0, min_team_level=0).allowed is True
        clock.advance(61)
        assert manager.check_permission("u1", team_level=0, min_team_level=0).allowed is False

    def test_assign_and_remove_voice(self, manager):
        user = manager.assign_voice("u1", "viewer", "google-de", "google")
        assert user.assigned_voice_id == "google-de"
        assert user.assigned_engine_id == "google"
        assert manager.check_permission("u1", team_level=0, min_team_level=9).reason == "voice_assigned"
        assert manager.remove_voice("u1") is True
        stored = manager.get_user("u1")
        assert stored.assigned_voice_id is None
        assert stored.assigned_engine_id is None

    def test_unknown_user_operations(self, manager):
        assert manager.unblacklist("ghost") is False
        assert manager.remove_voice("ghost") is False
        assert manager.delete_user("ghost") is False
        assert manager.get_user("ghost") is None

    def test_volume_gain(self, manager):
        assert manager.set_volume_gain("u1", None, 1.5).volume_gain == 1.5
        with pytest.raises(ValueError):
            manager.set_volume_gain("u1", None, -0.1)

    def test_deny_clears_whitelist(self, manager):
        manager.allow("u1")
        manager.deny("u1")
        assert manager.get_user("u1").allow_tts is False

    def test_username_updated(self, manager):
        manager.allow("u1", "old_name")
        manager.allow("u1", "new_name")
        assert manager.get_user("u1").username == "new_name"

    def test_delete_user(self, manager):
        manager.blacklist("u1")
        assert manager.delete_user("u1") is True
        assert manager.check_permission("u1", team_level=0, min_team_level=0).allowed is True


class TestListing:

    def test_filters(self, manager):
        manager.allow("a")
        manager.blacklist("b")
        manager.assign_voice("c", None, "v1")
        assert {u.user_id for u in manager.list_users()} == {"a", "b", "c"}
        assert [u.user_id for u in manager.list_users("whitelisted")] == ["a"]
        assert [u.user_id for u in manager.list_users("blacklisted")] == ["b"]
        assert [u.user_id for u in manager.list_users("voice_assigned")] == ["c"]

    def test_unknown_filter(self, manager):
        with pytest.raises(ValueError):
            manager.list_users("admins")

    def test_stats(self, manager):
        manager.allow("a")
        manager.blacklist("b")
        stats = manager.stats()
        assert stats["total_users"] == 2
        assert stats["whitelisted"] == 1
        assert stats["blacklisted"] == 1
        assert stats["voice_assigned"] == 0

    def test_row_roundtrip_ignores_unknown_keys(self):
        row = UserPermission("u1", "name", volume_gain=0.5).to_dict()
        row["legacy_field"] = True
        assert UserPermission.from_dict(row).volume_gain == 0.5
