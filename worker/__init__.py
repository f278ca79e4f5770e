"""Background job entry points executed by RQ workers."""
