"""Baseline schema for MeepleVault: source records and derived stats."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_stats_engine"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Users ----------------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )

    # Libraries -----------------------------------------------------------
    op.create_table(
        "libraries",
        sa.Column("id", sa.String(length=80), nullable=False),
        sa.Column("owner_user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("visibility", sa.String(length=20), nullable=False, server_default=sa.text("'private'")),
        sa.Column("system_key", sa.String(length=20), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("visibility in ('public','private')", name="ck_libraries_visibility"),
        sa.ForeignKeyConstraint(
            ["owner_user_id"], ["users.id"],
            name="fk_libraries_owner_user_id_users",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_libraries"),
        sa.UniqueConstraint("owner_user_id", "system_key", name="uq_library_owner_system_key"),
    )
    op.create_index("ix_libraries_owner_user_id", "libraries", ["owner_user_id"])
    op.create_index("ix_libraries_system_key", "libraries", ["system_key"])

    op.create_table(
        "library_items",
        sa.Column("library_id", sa.String(length=80), nullable=False),
        sa.Column("game_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(
            ["library_id"], ["libraries.id"],
            name="fk_library_items_library_id_libraries",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("library_id", "game_id", name="pk_library_items"),
    )

    # Owned games ---------------------------------------------------------
    op.create_table(
        "user_games",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("game_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'owned'")),
        sa.Column("play_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("win_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status in ('owned','preordered','formerlyOwned','played')",
            name="ck_user_games_status",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"],
            name="fk_user_games_user_id_users",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("user_id", "game_id", name="pk_user_games"),
    )

    # Tournaments and sessions -------------------------------------------
    op.create_table(
        "tournaments",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("member_ids", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_tournaments"),
    )

    op.create_table(
        "game_sessions",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("tournament_id", sa.String(length=64), nullable=True),
        sa.Column("participant_user_ids", sa.JSON(), nullable=False),
        sa.Column("winner_user_ids", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'incomplete'")),
        sa.Column("game_id", sa.String(length=64), nullable=True),
        sa.Column("game_name", sa.String(length=200), nullable=True),
        sa.Column("game_thumbnail", sa.String(length=500), nullable=True),
        sa.Column("played_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status in ('incomplete','complete')", name="ck_game_sessions_status"),
        sa.ForeignKeyConstraint(
            ["tournament_id"], ["tournaments.id"],
            name="fk_game_sessions_tournament_id_tournaments",
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_game_sessions"),
    )
    op.create_index("ix_game_sessions_tournament_id", "game_sessions", ["tournament_id"])
    op.create_index("ix_game_sessions_status", "game_sessions", ["status"])
    op.create_index("ix_game_sessions_game_id", "game_sessions", ["game_id"])
    op.create_index("ix_game_sessions_played_at", "game_sessions", ["played_at"])

    # Derived stats -------------------------------------------------------
    op.create_table(
        "user_stats",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("games_played", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("games_won", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tournaments_played", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("games_owned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("unplayed_games", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("most_played_game_id", sa.String(length=64), nullable=True),
        sa.Column("most_played_game_name", sa.String(length=200), nullable=True),
        sa.Column("most_played_game_thumbnail", sa.String(length=500), nullable=True),
        sa.Column("most_played_game_count", sa.Integer(), nullable=True),
        sa.Column("last_updated", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("user_id", name="pk_user_stats"),
    )

    op.create_table(
        "user_game_stats",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("game_id", sa.String(length=64), nullable=False),
        sa.Column("game_name", sa.String(length=200), nullable=False),
        sa.Column("game_thumbnail", sa.String(length=500), nullable=True),
        sa.Column("play_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("win_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("first_played", sa.DateTime(), nullable=True),
        sa.Column("last_played", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("user_id", "game_id", name="pk_user_game_stats"),
    )
    op.create_index(
        "ix_user_game_stats_user_play_count",
        "user_game_stats",
        ["user_id", "play_count"],
    )


def downgrade() -> None:
    op.drop_index("ix_user_game_stats_user_play_count", table_name="user_game_stats")
    op.drop_table("user_game_stats")
    op.drop_table("user_stats")
    for index in (
        "ix_game_sessions_played_at",
        "ix_game_sessions_game_id",
        "ix_game_sessions_status",
        "ix_game_sessions_tournament_id",
    ):
        op.drop_index(index, table_name="game_sessions")
    op.drop_table("game_sessions")
    op.drop_table("tournaments")
    op.drop_table("user_games")
    op.drop_table("library_items")
    op.drop_index("ix_libraries_system_key", table_name="libraries")
    op.drop_index("ix_libraries_owner_user_id", table_name="libraries")
    op.drop_table("libraries")
    op.drop_table("users")
