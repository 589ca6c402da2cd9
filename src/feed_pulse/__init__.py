"""Tiered feed ingestion with budgeted embedding enrichment and topic clustering."""

__version__ = "0.1.0"
