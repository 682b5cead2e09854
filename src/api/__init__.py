"""HTTP API for the instance engine."""
