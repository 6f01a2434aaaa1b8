"""Job processing: retry policy, worker pool, dispatch and Celery tasks."""
