"""Command-line interface for scanpipe."""
