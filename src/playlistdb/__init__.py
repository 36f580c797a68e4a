"""Playlist export ingestion into a relational store, with a read-only query API."""

__version__ = "0.1.0"
