"""Tests for the guest progress cache kept in chat storage."""

from __future__ import annotations

from storybot.services.guest_cache import MS_PER_DAY, GuestCache

NOW_MS = 1_700_000_000_000


def _cache(entries=None, ttl_days: int = 7) -> GuestCache:
    return GuestCache(entries, ttl_days=ttl_days, clock=lambda: NOW_MS)


class TestGuestCache:
    def test_save_and_read(self) -> None:
        cache = _cache()

        entry = cache.save("s1", 4)

        assert entry == {"story_id": "s1", "position": 4, "timestamp_ms": NOW_MS}
        assert cache.get_position("s1") == 4

    def test_entry_at_the_limit_is_fresh(self) -> None:
        cache = _cache({"s1": {"story_id": "s1", "position": 2, "timestamp_ms": NOW_MS - 7 * MS_PER_DAY}})

        assert cache.get_position("s1") == 2

    def test_stale_entry_is_dropped_on_read(self) -> None:
        cache = _cache({"s1": {"story_id": "s1", "position": 2, "timestamp_ms": NOW_MS - 10 * MS_PER_DAY}})

        assert cache.get_position("s1") is None
        assert cache.to_dict() == {}

    def test_entry_without_timestamp_is_stale(self) -> None:
        cache = _cache({"s1": {"story_id": "s1", "position": 2, "timestamp_ms": "yesterday"}})

        assert cache.get("s1") is None

    def test_entry_without_position_is_dropped(self) -> None:
        cache = _cache({"s1": {"story_id": "s1", "timestamp_ms": NOW_MS}, "s2": "garbage"})

        assert cache.get_position("s1") is None
        assert cache.get_position("s2") is None
        assert cache.to_dict() == {}

    def test_unknown_story(self) -> None:
        assert _cache().get("missing") is None

    def test_discard(self) -> None:
        cache = _cache()
        cache.save("s1", 1)
        cache.save("s2", 1)

        cache.discard("s1")
        cache.discard("never-saved")

        assert cache.story_ids() == ["s2"]

    def test_round_trip_through_storage(self) -> None:
        """The dict form is what chat storage keeps between updates."""
        cache = _cache()
        cache.save("s1", 3)

        restored = _cache(cache.to_dict())

        assert restored.get_position("s1") == 3

    def test_to_dict_is_a_copy(self) -> None:
        cache = _cache()
        stored = cache.to_dict()

        cache.save("s1", 1)

        assert stored == {}
