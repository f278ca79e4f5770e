"""Helpers for interacting with the Redis-backed job queue."""

from __future__ import annotations

import os

import redis
from flask import current_app, has_app_context
from rq import Queue


def _redis_url() -> str:
    if has_app_context():
        return current_app.config.get("REDIS_URL") or "redis://localhost:6379/0"
    return os.getenv("REDIS_URL") or "redis://localhost:6379/0"


def get_redis_connection():
    return redis.from_url(_redis_url())


def get_queue(name: str = "stats") -> Queue:
    return Queue(name, connection=get_redis_connection())
