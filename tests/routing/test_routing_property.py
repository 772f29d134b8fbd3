"""Property-based tests for event routing and message ids."""

import re

import pytest
from hypothesis import given, settings, strategies as st

from notifier.core.exceptions import UnresolvedEventType, ValidationError
from notifier.modules.routing.events import (
    Category,
    EVENT_CATEGORY_MAP,
    QUEUES,
    category_from_queue_type,
    resolve_category,
    supported_event_types,
)
from notifier.modules.routing.service import generate_message_id

known_event_types = st.sampled_from(sorted(EVENT_CATEGORY_MAP))

unknown_event_types = st.text(min_size=1, max_size=40).filter(
    lambda s: s.strip().lower() not in EVENT_CATEGORY_MAP
)


class TestEventRouting:
    """Every supported event type maps to exactly one category queue."""

    @given(event_type=known_event_types)
    @settings(max_examples=100)
    def test_supported_types_resolve_to_their_prefix_category(self, event_type: str):
        category = resolve_category(event_type)

        assert category in Category
        assert event_type.startswith(category.value)
        assert category.queue_name == QUEUES[category]

    @given(event_type=known_event_types)
    @settings(max_examples=50)
    def test_lookup_is_case_insensitive(self, event_type: str):
        assert resolve_category(event_type.upper()) == resolve_category(event_type)

    @given(event_type=unknown_event_types)
    @settings(max_examples=100)
    def test_unsupported_types_are_rejected(self, event_type: str):
        with pytest.raises(UnresolvedEventType) as exc_info:
            resolve_category(event_type)

        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.event_type == event_type

    def test_every_category_has_a_queue_and_event_types(self):
        assert set(QUEUES) == set(Category)
        for category in Category:
            assert any(c == category for c in EVENT_CATEGORY_MAP.values())

    def test_supported_event_types_are_sorted_and_complete(self):
        types = supported_event_types()
        assert types == sorted(EVENT_CATEGORY_MAP)
        assert "wallet_debited" in types

    def test_queue_type_round_trip(self):
        for category in Category:
            assert category_from_queue_type(category.queue_type) == category
            assert category_from_queue_type(category.value) == category


class TestMessageIds:
    """Generated message ids are unique and time prefixed."""

    def test_ids_never_repeat(self):
        ids = {generate_message_id() for _ in range(5000)}
        assert len(ids) == 5000

    def test_id_format(self):
        assert re.fullmatch(r"msg_\d{13}_[0-9a-f]{16}", generate_message_id())
