"""SQLite audit log."""
