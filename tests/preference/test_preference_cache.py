"""Tests for the read-through preference cache."""

import pytest
from hypothesis import given, settings, strategies as st

from notifier.core.exceptions import InvalidPreferenceError, PreferenceStoreError, ValidationError
from notifier.modules.preference.cache import PreferenceCache, collapse_preferences, validate_entry
from notifier.modules.preference.schemas import ChannelPreferences, DEFAULT_PREFERENCES, PreferenceRecord
from notifier.modules.routing.events import Category, NotificationChannel

records = st.lists(
    st.builds(
        PreferenceRecord,
        user_id=st.just("u1"),
        channel=st.sampled_from([c.value for c in NotificationChannel]),
        event_category=st.sampled_from([c.value for c in Category]),
        enabled=st.booleans(),
    ),
    max_size=12,
)


class TestCollapsePreferences:

    @given(rows=records)
    @settings(max_examples=200)
    def test_latest_row_decides_channel(self, rows):
        collapsed = collapse_preferences(rows)

        for channel in NotificationChannel:
            channel_rows = [r for r in rows if r.channel == channel.value]
            if channel_rows:
                assert collapsed.is_enabled(channel) == channel_rows[-1].enabled
            else:
                assert collapsed.is_enabled(channel) == DEFAULT_PREFERENCES.is_enabled(channel)

    def test_no_rows_gives_defaults(self):
        assert collapse_preferences([]) == DEFAULT_PREFERENCES

    def test_unknown_channels_are_ignored(self):
        rows = [PreferenceRecord(user_id="u1", channel="fax", event_category="booking", enabled=True)]
        assert collapse_preferences(rows) == DEFAULT_PREFERENCES


class TestValidateEntry:

    def test_accepts_both_field_spellings(self):
        first = validate_entry({"channel": "sms", "eventCategory": "wallet", "enabled": True})
        second = validate_entry({"channel": "sms", "eventType": "wallet", "isEnabled": True})

        assert first == second
        assert first.channel == NotificationChannel.SMS
        assert first.event_category == Category.WALLET

    @pytest.mark.parametrize("entry", [
        {"channel": "fax", "eventCategory": "wallet", "enabled": True},
        {"channel": "sms", "eventCategory": "travel", "enabled": True},
        {"channel": "sms", "eventCategory": "wallet", "enabled": "yes"},
        {"channel": "sms", "eventCategory": "wallet", "enabled": 1},
        {"channel": "sms", "eventCategory": "wallet"},
        "sms",
    ])
    def test_rejects_invalid_entries(self, entry):
        with pytest.raises(InvalidPreferenceError) as exc_info:
            validate_entry(entry)
        assert isinstance(exc_info.value, ValidationError)


class TestPreferenceCacheReads:

    @pytest.mark.asyncio
    async def test_store_failure_fails_open_to_defaults(self, fake_redis, preference_store):
        preference_store.fail = True
        cache = PreferenceCache(fake_redis, preference_store)

        assert await cache.get("u1") == ChannelPreferences(email=True, sms=False, push=False)

    @pytest.mark.asyncio
    async def test_cache_and_store_failure_fails_open(self, fake_redis, preference_store):
        fake_redis.fail = True
        preference_store.fail = True
        cache = PreferenceCache(fake_redis, preference_store)

        assert await cache.get("u1") == DEFAULT_PREFERENCES

    @pytest.mark.asyncio
    async def test_cache_outage_reads_through_to_store(self, fake_redis, preference_store):
        preference_store.rows[("u1", "push", "booking")] = True
        fake_redis.fail = True
        cache = PreferenceCache(fake_redis, preference_store)

        preferences = await cache.get("u1")

        assert preferences.push is True
        assert preference_store.loads == 1

    @pytest.mark.asyncio
    async def test_second_read_is_served_from_cache(self, fake_redis, preference_store):
        cache = PreferenceCache(fake_redis, preference_store)

        first = await cache.get("u1")
        second = await cache.get("u1")

        assert first == second
        assert preference_store.loads == 1
        assert "user:u1:preferences" in fake_redis.data

    @pytest.mark.asyncio
    async def test_unreadable_cache_entry_is_replaced(self, fake_redis, preference_store):
        fake_redis.data["user:u1:preferences"] = "not json"
        cache = PreferenceCache(fake_redis, preference_store)

        assert await cache.get("u1") == DEFAULT_PREFERENCES
        assert preference_store.loads == 1


class TestPreferenceCacheUpdates:

    @pytest.mark.asyncio
    async def test_update_is_visible_on_next_read(self, fake_redis, preference_store):
        cache = PreferenceCache(fake_redis, preference_store, ttl_seconds=3600)
        assert (await cache.get("u1")).sms is False

        await cache.update("u1", [{"channel": "sms", "eventCategory": "booking", "enabled": True}])

        assert (await cache.get("u1")).sms is True

    @pytest.mark.asyncio
    async def test_update_returns_fresh_preferences(self, fake_redis, preference_store):
        cache = PreferenceCache(fake_redis, preference_store)

        result = await cache.update("u1", [
            {"channel": "email", "eventType": "wallet", "isEnabled": False},
            {"channel": "push", "eventType": "wallet", "isEnabled": True},
        ])

        assert result == ChannelPreferences(email=False, sms=False, push=True)

    @pytest.mark.asyncio
    async def test_disabling_in_another_category_takes_effect(self, fake_redis, preference_store):
        cache = PreferenceCache(fake_redis, preference_store)

        await cache.update("u1", [{"channel": "email", "eventCategory": "booking", "enabled": True}])
        preferences = await cache.update("u1", [{"channel": "email", "eventCategory": "wallet", "enabled": False}])

        assert preferences.email is False
        assert (await cache.get("u1")).email is False

    @pytest.mark.asyncio
    async def test_re_enabling_an_older_row_takes_effect(self, fake_redis, preference_store):
        cache = PreferenceCache(fake_redis, preference_store)

        await cache.update("u1", [{"channel": "sms", "eventCategory": "booking", "enabled": True}])
        await cache.update("u1", [{"channel": "sms", "eventCategory": "wallet", "enabled": False}])
        preferences = await cache.update("u1", [{"channel": "sms", "eventCategory": "booking", "enabled": True}])

        assert preferences.sms is True

    @pytest.mark.asyncio
    async def test_one_invalid_entry_rejects_the_whole_update(self, fake_redis, preference_store):
        cache = PreferenceCache(fake_redis, preference_store)

        with pytest.raises(InvalidPreferenceError):
            await cache.update("u1", [
                {"channel": "sms", "eventCategory": "booking", "enabled": True},
                {"channel": "fax", "eventCategory": "booking", "enabled": True},
            ])

        assert preference_store.upserts == 0
        assert preference_store.rows == {}

    @pytest.mark.asyncio
    async def test_non_list_update_is_rejected(self, fake_redis, preference_store):
        cache = PreferenceCache(fake_redis, preference_store)

        with pytest.raises(InvalidPreferenceError):
            await cache.update("u1", {"channel": "sms"})

    @pytest.mark.asyncio
    async def test_invalidation_failure_is_reported(self, fake_redis, preference_store):
        fake_redis.fail_delete = True
        cache = PreferenceCache(fake_redis, preference_store)

        with pytest.raises(PreferenceStoreError):
            await cache.update("u1", [{"channel": "sms", "eventCategory": "booking", "enabled": True}])
