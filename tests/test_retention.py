"""Tests for retention pruning."""

from datetime import timedelta

import pytest

from backup_drill.artifacts import artifact_key
from backup_drill.errors import StorageError
from backup_drill.retention import RetentionPruner

from conftest import PREFIX


def seed(store, *keys):
    for key in keys:
        store.objects[key] = b"x"


class TestRetentionPruner:
    """Tests for RetentionPruner.prune."""

    def test_deletes_only_expired(self, store, transport, clock, now):
        old = artifact_key(PREFIX, now - timedelta(days=8))
        older_enc = artifact_key(PREFIX, now - timedelta(days=30), encrypted=True)
        recent = artifact_key(PREFIX, now - timedelta(days=1))
        seed(store, old, older_enc, recent)

        result = RetentionPruner(transport, 7, clock=clock).prune()

        assert sorted(result.deleted) == sorted([old, older_enc])
        assert result.kept == [recent]
        assert set(store.objects) == {recent}

    def test_boundary_is_kept(self, store, transport, clock, now):
        # Created exactly at the cutoff: not older than the window
        edge = artifact_key(PREFIX, now - timedelta(days=7))
        just_past = artifact_key(PREFIX, now - timedelta(days=7, seconds=1))
        seed(store, edge, just_past)

        result = RetentionPruner(transport, 7, clock=clock).prune()

        assert result.kept == [edge]
        assert result.deleted == [just_past]

    def test_compares_time_not_date(self, store, transport, clock, now):
        # Same calendar day as the cutoff, but an hour later
        later_same_day = artifact_key(PREFIX, now - timedelta(days=7) + timedelta(hours=1))
        earlier_same_day = artifact_key(PREFIX, now - timedelta(days=7) - timedelta(hours=1))
        seed(store, later_same_day, earlier_same_day)

        result = RetentionPruner(transport, 7, clock=clock).prune()

        assert result.kept == [later_same_day]
        assert result.deleted == [earlier_same_day]

    def test_unparsable_keys_retained(self, store, transport, clock, now, caplog):
        seed(store, f"{PREFIX}/README.txt", f"{PREFIX}/backup_latest.sql.gz")

        result = RetentionPruner(transport, 1, clock=clock).prune()

        assert result.deleted == []
        assert sorted(result.unparsable) == [f"{PREFIX}/README.txt", f"{PREFIX}/backup_latest.sql.gz"]
        assert result.retained_count == 2
        assert len(store.objects) == 2
        assert "unrecognized" in caplog.text

    def test_delete_failure_continues(self, store, transport, clock, now):
        stuck = artifact_key(PREFIX, now - timedelta(days=10))
        gone = artifact_key(PREFIX, now - timedelta(days=9))
        seed(store, stuck, gone)
        store.broken_keys.add(stuck)

        result = RetentionPruner(transport, 7, clock=clock).prune()

        assert result.failed == [stuck]
        assert result.deleted == [gone]
        assert stuck in store.objects

    def test_list_failure_raises(self, store, transport, clock):
        store.failures["list"] = -1
        with pytest.raises(StorageError):
            RetentionPruner(transport, 7, clock=clock).prune()

    def test_empty_store(self, transport, clock):
        result = RetentionPruner(transport, 7, clock=clock).prune()
        assert result.deleted_count == 0
        assert result.retained_count == 0

    def test_invalid_window(self, transport):
        with pytest.raises(ValueError):
            RetentionPruner(transport, 0)
