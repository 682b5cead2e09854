"""Catalog persistence for pets, items, schedules, and conflict groups."""
