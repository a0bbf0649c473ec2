"""Storage module - SQLite-backed document, transcript, settings and question store."""

from .database import Database, generate_short_id

__all__ = [
	"Database",
	"generate_short_id",
]
