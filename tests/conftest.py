import os
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]

# Isolate all tests to a throwaway instance + SQLite database
TEST_INSTANCE_DIR = ROOT_DIR / ".pytest-instance"
TEST_INSTANCE_DIR.mkdir(parents=True, exist_ok=True)
TEST_DB_PATH = TEST_INSTANCE_DIR / "test.sqlite"
os.environ["FLASK_ENV"] = "testing"
os.environ["INSTANCE_DIR"] = str(TEST_INSTANCE_DIR)
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH.as_posix()}"
# Factories write source rows directly; tests opt into the change feed explicitly
os.environ["STATS_CHANGE_FEED_ENABLED"] = "0"
os.environ["STATS_RUN_INLINE"] = "1"

import app as mv_app  # noqa: E402  pylint:disable=wrong-import-position
from extensions import db  # noqa: E402

create_app = mv_app.create_app


@pytest.fixture(scope="session")
def app():
    flask_app = create_app()
    flask_app.config.update(
        TESTING=True,
        STATS_CHANGE_FEED_ENABLED=False,
        STATS_RUN_INLINE=True,
    )
    return flask_app


@pytest.fixture
def db_session(app):
    with app.app_context():
        db.session.remove()
        db.engine.dispose()
        if TEST_DB_PATH.exists():
            TEST_DB_PATH.unlink()
        for suffix in ("-wal", "-shm"):
            sidecar = TEST_DB_PATH.with_name(TEST_DB_PATH.name + suffix)
            if sidecar.exists():
                sidecar.unlink()
        db.create_all()
        yield db
        db.session.remove()
        db.engine.dispose()
        db.drop_all()


@pytest.fixture
def change_feed(app, db_session):
    """Turn on the ORM change feed so commits drive the stats engine inline."""
    previous = app.config["STATS_CHANGE_FEED_ENABLED"]
    app.config["STATS_CHANGE_FEED_ENABLED"] = True
    yield db_session
    app.config["STATS_CHANGE_FEED_ENABLED"] = previous


@pytest.fixture
def cli_runner(app, db_session):  # noqa: ARG001 - keeps DB initialised for CLI tests
    return app.test_cli_runner()
