"""Attestation registry indexer: projects registry events into a PostgreSQL read model."""

__version__ = "0.1.0"
