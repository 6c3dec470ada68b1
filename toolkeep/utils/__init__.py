"""Presentation helpers for the toolkeep CLI."""
