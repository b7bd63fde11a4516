"""JobWarden command line interface."""
