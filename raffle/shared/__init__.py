"""Shared infrastructure: config, storage, schemas, errors."""
