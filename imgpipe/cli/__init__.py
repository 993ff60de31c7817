"""Command-line interface for imgpipe."""
