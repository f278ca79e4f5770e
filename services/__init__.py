"""Stats engine services: change records, deltas, writes and the change feed."""
