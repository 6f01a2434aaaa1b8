"""Video module: job records, lifecycle state machine, upload submission and API."""
