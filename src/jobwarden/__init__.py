"""JobWarden - lifecycle watchdog for jobs in a shared metadata store."""

__version__ = "0.1.0"
