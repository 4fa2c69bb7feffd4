"""SQLite persistence: credentials, session cache, mirror tables, jobs and sync status."""
