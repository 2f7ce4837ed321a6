"""Persistence layer - ORM models, sessions, migrations and repositories."""
