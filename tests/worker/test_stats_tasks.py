import pytest

from services.stats_changes import KIND_GAME_SESSION, KIND_USER_GAME, Created, Updated, UserGameSnapshot, change_to_payload
from utils.error_handling import MalformedRecordError
from worker.stats_tasks import process_stats_change
from factories import session_snapshot, stored_stats


def test_worker_applies_shipped_change(db_session):
    before = session_snapshot(["alice"], status="incomplete", session_id="s1")
    after = session_snapshot(["alice"], winners=["alice"], session_id="s1")

    result = process_stats_change(change_to_payload(KIND_GAME_SESSION, Updated(before, after)))

    assert result["user_deltas"] == {"alice": {"played": 1, "won": 1}}
    assert stored_stats("alice").games_won == 1


def test_worker_ignores_changes_without_handler(db_session):
    record = UserGameSnapshot("alice", "catan")
    payload = change_to_payload(KIND_USER_GAME, Updated(record, UserGameSnapshot("alice", "catan", play_count=1)))

    assert process_stats_change(payload) is None


def test_worker_rejects_malformed_payload(db_session):
    with pytest.raises(MalformedRecordError):
        process_stats_change({"kind": "deck", "before": None, "after": None})
