"""Daily instance scheduling, conflict detection, and confirmation engine."""
