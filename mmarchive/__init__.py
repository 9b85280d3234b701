"""Mattermost workspace archiver with a local full-text search index."""

__version__ = "0.1.0"
