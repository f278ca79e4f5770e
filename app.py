"""Flask application factory, CLI entry points, and database bootstrap."""

import json
import logging
import os
import sqlite3

import click
from flask import Flask
from sqlalchemy import event
from sqlalchemy.engine import Engine

from dotenv import load_dotenv; load_dotenv()

from config import Config, INSTANCE_DIR as CONFIG_INSTANCE_DIR
from extensions import db, migrate
from utils.logging_config import configure_logging

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Extension bootstrap helpers
# ---------------------------------------------------------------------------

def _safe_init_sqlalchemy(app: Flask):
    """Initialise SQLAlchemy only if it has not been bound yet."""
    if not getattr(app, "extensions", None) or "sqlalchemy" not in app.extensions:
        db.init_app(app)


def _safe_init_migrate(app: Flask):
    """Bind Flask-Migrate in batch mode so SQLite migrations can alter tables."""
    if not getattr(app, "extensions", None) or "migrate" not in app.extensions:
        migrate.init_app(app, db, render_as_batch=True)


def create_app(config_object=None):
    """Create, configure, and return a fully-initialised Flask app."""
    app = Flask(
        __name__,
        instance_path=str(CONFIG_INSTANCE_DIR),
        instance_relative_config=False,
    )
    app.config.from_object(config_object or Config)
    os.makedirs(app.instance_path, exist_ok=True)
    configure_logging(app)

    # --- Core extensions ---
    _safe_init_sqlalchemy(app)
    _safe_init_migrate(app)

    with app.app_context():
        # Import models after db is bound
        import models  # noqa: F401

    from services.stats_feed import register_change_feed

    register_change_feed(app)

    # ------------------------------------------------------------------
    # CLI COMMANDS
    # ------------------------------------------------------------------
    from services.stats_service import load_game_stats, load_top_played_games, load_user_stats, stats_drift

    @app.cli.command("init-db")
    def init_db():
        """Create any missing tables (use `flask db upgrade` for managed schemas)."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("stats-show")
    @click.argument("user_id")
    @click.option("--top", default=5, show_default=True, help="How many top-played games to list.")
    @click.option("--game", "game_id", default=None, help="Print one game's stats instead.")
    def stats_show(user_id, top, game_id):
        """Print the stored stats of a user as JSON."""
        if game_id:
            game = load_game_stats(user_id, game_id)
            if game is None:
                raise click.ClickException(f"No stats recorded for {user_id} on {game_id}.")
            click.echo(json.dumps(game, indent=2, default=str))
            return
        payload = load_user_stats(user_id)
        payload["top_played"] = load_top_played_games(user_id, limit=top)
        click.echo(json.dumps(payload, indent=2, default=str))

    @app.cli.command("stats-drift")
    @click.argument("user_id")
    def stats_drift_cmd(user_id):
        """Compare stored counters with a recount from source tables (read-only)."""
        drift = stats_drift(user_id)
        if not drift:
            click.echo(f"No drift for {user_id}.")
            return
        for counter, values in sorted(drift.items()):
            click.echo(f"{counter}: stored={values['stored']} expected={values['expected']}")
        raise SystemExit(1)

    @app.cli.command("stats-replay")
    @click.argument("payload_file", type=click.File("r"))
    def stats_replay(payload_file):
        """Apply a logged stats payload (JSON file, or - for stdin) that never landed."""
        from worker.stats_tasks import process_stats_change

        try:
            payload = json.load(payload_file)
        except ValueError as exc:
            raise click.ClickException(f"Payload is not valid JSON: {exc}") from exc
        result = process_stats_change(payload)
        click.echo(json.dumps(result, indent=2, default=str))

    @app.cli.command("stats-worker")
    @click.option("--queue", default=None, help="Queue name (defaults to STATS_QUEUE_NAME).")
    @click.option("--burst", is_flag=True, help="Exit once the queue is empty.")
    def stats_worker(queue, burst):
        """Run an RQ worker that processes queued stats updates."""
        from rq import Worker
        from services.task_queue import get_queue

        name = queue or app.config.get("STATS_QUEUE_NAME", "stats")
        q = get_queue(name)
        worker = Worker([q], connection=q.connection)
        click.echo(f"Starting RQ worker for queue '{name}'")
        worker.work(burst=burst)

    return app


# Single SQLite PRAGMA hook (avoid duplicate listeners)
_SQLITE_PRAGMA_STATEMENTS = (
    "PRAGMA foreign_keys=ON;",
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA busy_timeout=5000;",
)


def _apply_sqlite_pragmas(dbapi_connection) -> None:
    """Execute the configured PRAGMAs if this is a SQLite connection."""
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    try:
        cur = dbapi_connection.cursor()
        for statement in _SQLITE_PRAGMA_STATEMENTS:
            cur.execute(statement)
        cur.close()
    except sqlite3.DatabaseError as exc:
        logger.warning("SQLite PRAGMA setup failed: %s", exc)


@event.listens_for(Engine, "connect")
def _sqlite_pragmas(dbapi_connection, _) -> None:
    """Apply pragmatic performance/safety PRAGMAs each time SQLite opens a connection."""
    _apply_sqlite_pragmas(dbapi_connection)


if __name__ == "__main__":
    _app = create_app()
    _app.run(host="127.0.0.1", port=5000, debug=True)
