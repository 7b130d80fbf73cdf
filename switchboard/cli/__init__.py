"""Command-line interface for switchboard."""
