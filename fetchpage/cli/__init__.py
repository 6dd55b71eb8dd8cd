"""Command-line interface for fetchpage."""
