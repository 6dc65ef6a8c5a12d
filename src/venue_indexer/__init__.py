"""Venue Indexer: quota-aware search indexing submissions for the venue directory."""

__version__ = "0.1.0"
