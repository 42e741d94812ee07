"""Translate JSON i18n documents with caching and cross-file deduplication."""

__version__ = "1.0.0"
