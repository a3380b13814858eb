"""Two-way synchronisation between agency Google Sheets and the local SQLite cache."""

__version__ = "1.4.0"
