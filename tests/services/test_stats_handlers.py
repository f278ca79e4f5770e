import logging

import pytest

from extensions import db
from models import Library
from services.stats_changes import (
    KIND_GAME_SESSION,
    KIND_TOURNAMENT,
    KIND_USER,
    KIND_USER_GAME,
    STATUS_INCOMPLETE,
    Created,
    Deleted,
    TournamentSnapshot,
    Updated,
    UserGameSnapshot,
    UserSnapshot,
)
from services.stats_handlers import (
    handle_change,
    handle_owned_game_created,
    handle_owned_game_deleted,
    handle_session_written,
    handle_tournament_written,
    handle_user_created,
)
from services.stats_service import stats_drift
from services.stats_writer import StatsBatch
from utils.error_handling import MalformedRecordError
from factories import (
    PLAYED_AT,
    create_library,
    create_user,
    create_user_game,
    session_snapshot,
    stored_game_stats,
    stored_stats,
    stored_user_game,
)


def _complete(session_id="s1", **kwargs):
    return session_snapshot(session_id=session_id, **kwargs)


def _incomplete(session_id="s1", **kwargs):
    return session_snapshot(session_id=session_id, status=STATUS_INCOMPLETE, **kwargs)


def test_incomplete_session_created_changes_nothing(db_session):
    result = handle_session_written(Created(_incomplete(participants=["alice", "bob"], winners=["alice"])))

    assert result.skipped
    assert stored_stats("alice") is None


def test_session_completion_updates_players_games_and_owned_record(db_session):
    create_user("alice")
    create_user_game("alice", "catan", play_count=0)
    batch = StatsBatch()
    batch.increment_stats("alice", games_owned=1, unplayed_games=1)
    batch.commit()

    before = _incomplete(participants=["alice", "bob"], winners=["alice"])
    after = _complete(participants=["alice", "bob"], winners=["alice"])
    result = handle_session_written(Updated(before, after))

    assert result.user_deltas == {
        "alice": {"played": 1, "won": 1},
        "bob": {"played": 1, "won": 0},
    }
    alice = stored_stats("alice")
    assert (alice.games_played, alice.games_won) == (1, 1)
    assert alice.unplayed_games == 0
    assert alice.games_owned == 1
    bob = stored_stats("bob")
    assert (bob.games_played, bob.games_won) == (1, 0)

    game = stored_game_stats("alice", "catan")
    assert (game.play_count, game.win_count) == (1, 1)
    assert game.first_played == PLAYED_AT
    assert game.last_played == PLAYED_AT
    owned = stored_user_game("alice", "catan")
    assert (owned.play_count, owned.win_count) == (1, 1)


def test_session_completion_sets_most_played(db_session):
    handle_session_written(Created(_complete(participants=["alice"], game_id="azul", game_name="Azul")))

    stats = stored_stats("alice")
    assert stats.most_played_game_id == "azul"
    assert stats.most_played_game_name == "Azul"
    assert stats.most_played_game_count == 1


def test_redelivered_change_is_still_edge_triggered(db_session):
    before = _incomplete(participants=["alice"])
    after = _complete(participants=["alice"])

    handle_session_written(Updated(before, after))
    result = handle_session_written(Updated(after, after))

    assert result.skipped
    assert stored_stats("alice").games_played == 1


def test_sole_winner_session_reopened_reverts_counts(db_session):
    create_user("alice")
    create_user_game("alice", "catan", play_count=0)
    complete = _complete(participants=["alice"], winners=["alice"])
    handle_session_written(Created(complete))

    handle_session_written(Updated(complete, _incomplete(participants=["alice"], winners=["alice"])))

    stats = stored_stats("alice")
    assert (stats.games_played, stats.games_won) == (0, 0)
    # -1 on completion, +1 when the owned record dropped back to 0 plays
    assert stats.unplayed_games == 0
    assert stored_user_game("alice", "catan").play_count == 0
    assert stored_game_stats("alice", "catan").play_count == 0
    assert stats.most_played_game_id is None


def test_unplayed_only_moves_for_owned_status(db_session):
    create_user("alice")
    create_user_game("alice", "catan", status="preordered", play_count=0)

    handle_session_written(Created(_complete(participants=["alice"])))

    stats = stored_stats("alice")
    assert stats.unplayed_games == 0
    # the record still mirrors the play
    assert stored_user_game("alice", "catan").play_count == 1


def test_session_without_game_id_logs_and_skips_per_game(db_session, caplog):
    with caplog.at_level(logging.WARNING, logger="services.stats_handlers"):
        result = handle_session_written(Created(_complete(participants=["alice"], game_id=None)))

    assert result.user_deltas == {"alice": {"played": 1, "won": 0}}
    assert stored_stats("alice").games_played == 1
    assert "no game id" in caplog.text


def test_moving_session_to_another_game_reattributes_plays(db_session):
    catan = _complete(participants=["alice"], winners=["alice"], game_id="catan", game_name="Catan")
    handle_session_written(Created(catan))
    azul = _complete(participants=["alice"], winners=["alice"], game_id="azul", game_name="Azul")

    handle_session_written(Updated(catan, azul))

    assert stored_stats("alice").games_played == 1
    assert stored_game_stats("alice", "catan").play_count == 0
    assert stored_game_stats("alice", "azul").play_count == 1
    assert stored_stats("alice").most_played_game_id == "azul"


def test_tournament_member_added(db_session):
    before = TournamentSnapshot("t1", frozenset({"alice"}))
    after = TournamentSnapshot("t1", frozenset({"alice", "bob"}))

    result = handle_tournament_written(Updated(before, after))

    assert result.user_deltas == {"bob": {"tournaments_played": 1}}
    assert stored_stats("bob").tournaments_played == 1
    assert stored_stats("alice") is None


def test_tournament_deleted_removes_membership(db_session):
    tournament = TournamentSnapshot("t1", frozenset({"alice", "bob"}))
    handle_tournament_written(Created(tournament))

    handle_tournament_written(Deleted(tournament))

    assert stored_stats("alice").tournaments_played == 0
    assert stored_stats("bob").tournaments_played == 0


def test_owned_record_deleted_with_plays(db_session):
    record = UserGameSnapshot("alice", "catan", status="owned", play_count=3)

    handle_owned_game_deleted(Deleted(record))

    stats = stored_stats("alice")
    assert stats.games_owned == -1
    assert stats.unplayed_games == 0


def test_unplayed_owned_record_deleted(db_session):
    handle_owned_game_deleted(Deleted(UserGameSnapshot("alice", "catan", play_count=0)))

    stats = stored_stats("alice")
    assert (stats.games_owned, stats.unplayed_games) == (-1, -1)


def test_non_owned_record_deleted_still_leaves_owned_count(db_session):
    record = UserGameSnapshot("alice", "catan", status="formerlyOwned", play_count=2)

    result = handle_owned_game_deleted(Deleted(record))

    assert not result.skipped
    stats = stored_stats("alice")
    assert (stats.games_owned, stats.unplayed_games) == (-1, 0)


def test_preordered_record_created_then_deleted_leaves_no_drift(db_session):
    create_user("alice")
    create_library("alice", game_ids=["catan"])
    record = create_user_game("alice", "catan", status="preordered")
    snapshot = UserGameSnapshot("alice", "catan", status="preordered")

    handle_owned_game_created(Created(snapshot))

    stats = stored_stats("alice")
    assert (stats.games_owned, stats.unplayed_games) == (1, 0)
    assert stats_drift("alice") == {}

    db.session.delete(record)
    db.session.commit()
    handle_owned_game_deleted(Deleted(snapshot))

    stats = stored_stats("alice")
    assert (stats.games_owned, stats.unplayed_games) == (0, 0)
    assert stats_drift("alice") == {}


def test_owned_record_created_in_default_library(db_session):
    create_user("alice")
    create_library("alice", game_ids=["catan"])
    create_user_game("alice", "catan")

    result = handle_owned_game_created(Created(UserGameSnapshot("alice", "catan")))

    assert not result.skipped
    stats = stored_stats("alice")
    assert (stats.games_owned, stats.unplayed_games) == (1, 1)


def test_owned_record_outside_default_library_is_ignored(db_session):
    create_user("alice")
    create_library("alice", system_key=Library.SYSTEM_WISHLIST, name="Wishlist", game_ids=["catan"])
    create_user_game("alice", "catan")

    result = handle_owned_game_created(Created(UserGameSnapshot("alice", "catan")))

    assert result.skipped
    assert stored_stats("alice") is None


def test_owned_record_created_backfills_play_history(db_session):
    create_user("alice")
    create_library("alice", game_ids=["catan"])
    handle_session_written(Created(_complete(participants=["alice"], winners=["alice"], session_id="s1")))
    handle_session_written(Created(_complete(participants=["alice"], session_id="s2")))
    create_user_game("alice", "catan", play_count=0)

    handle_owned_game_created(Created(UserGameSnapshot("alice", "catan", play_count=0)))

    record = stored_user_game("alice", "catan")
    assert (record.play_count, record.win_count) == (2, 1)
    stats = stored_stats("alice")
    assert stats.games_owned == 1
    assert stats.unplayed_games == 0


def test_backfill_never_lowers_existing_counts(db_session):
    create_user("alice")
    create_library("alice", game_ids=["catan"])
    handle_session_written(Created(_complete(participants=["alice"])))
    create_user_game("alice", "catan", play_count=5, win_count=0)

    handle_owned_game_created(Created(UserGameSnapshot("alice", "catan", play_count=5, win_count=0)))

    record = stored_user_game("alice", "catan")
    assert (record.play_count, record.win_count) == (5, 0)


def test_user_created_provisions_system_libraries_once(db_session):
    create_user("alice")
    change = Created(UserSnapshot("alice", "Alice"))

    handle_user_created(change)
    handle_user_created(change)

    libraries = Library.query.filter_by(owner_user_id="alice").order_by(Library.sort_order).all()
    assert [(lib.system_key, lib.name, lib.visibility) for lib in libraries] == [
        ("my", "My Library", "public"),
        ("wishlist", "Wishlist", "private"),
    ]


def test_router_dispatches_and_ignores_uninteresting_changes(db_session):
    owned = UserGameSnapshot("alice", "catan")

    assert handle_change(KIND_USER_GAME, Updated(owned, owned)) is None
    assert handle_change(KIND_USER, Deleted(UserSnapshot("alice"))) is None
    result = handle_change(KIND_TOURNAMENT, Created(TournamentSnapshot("t1", frozenset({"alice"}))))
    assert result.kind == KIND_TOURNAMENT
    assert handle_change(KIND_GAME_SESSION, Created(_incomplete())).skipped


def test_router_rejects_unknown_kind():
    with pytest.raises(MalformedRecordError):
        handle_change("deck", Created(UserSnapshot("alice")))


def test_owned_created_handler_requires_created_change():
    record = UserGameSnapshot("alice", "catan")
    with pytest.raises(MalformedRecordError):
        handle_owned_game_created(Deleted(record))
