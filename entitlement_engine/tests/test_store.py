"""
Unit tests for the subscription store.
"""

import pytest

from entitlement_engine.records.store import SubscriptionStore
from shared.test_helpers import TestDataFactory


class TestSubscriptionStore:
    """Test cases for SubscriptionStore."""

    @pytest.fixture
    def store(self):
        return SubscriptionStore()

    def test_starts_empty(self, store):
        assert store.record is None
        assert store.version == 0

    def test_replace_bumps_version(self, store):
        record = TestDataFactory.create_paid()

        snapshot = store.replace(record)

        assert snapshot.version == 1
        assert snapshot.record is record
        assert store.record is record
        assert store.snapshot is snapshot

    def test_replace_is_wholesale(self, store):
        first = TestDataFactory.create_paid(beds_used=10)
        second = TestDataFactory.create_trial()

        store.replace(first)
        old_snapshot = store.snapshot
        store.replace(second)

        assert store.record is second
        assert store.version == 2
        # Readers holding the old snapshot keep a consistent pair
        assert old_snapshot.record is first
        assert old_snapshot.version == 1

    def test_clear(self, store):
        store.replace(TestDataFactory.create_paid())

        snapshot = store.clear()

        assert snapshot.record is None
        assert store.version == 2

    def test_listeners_called_in_registration_order(self, store):
        calls = []
        store.add_listener(lambda snap: calls.append(("first", snap.version)))
        store.add_listener(lambda snap: calls.append(("second", snap.version)))

        store.replace(TestDataFactory.create_paid())

        assert calls == [("first", 1), ("second", 1)]

    def test_remove_listener(self, store):
        calls = []
        remove = store.add_listener(lambda snap: calls.append(snap.version))

        remove()
        remove()
        store.replace(TestDataFactory.create_paid())

        assert calls == []

    def test_failing_listener_is_isolated(self, store):
        calls = []

        def broken(snapshot):
            raise RuntimeError("host callback failed")

        store.add_listener(broken)
        store.add_listener(lambda snap: calls.append(snap.version))
        record = TestDataFactory.create_paid()

        snapshot = store.replace(record)
        store.replace(None)

        assert snapshot.record is record
        assert store.version == 2
        assert calls == [1, 2]
