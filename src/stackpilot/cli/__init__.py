"""Command-line interface for stackpilot."""
