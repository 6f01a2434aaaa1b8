"""Core infrastructure: configuration, database, storage, logging, tracing, metrics and Celery."""
