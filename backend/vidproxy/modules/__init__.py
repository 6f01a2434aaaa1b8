"""Application modules.

- video: Job records, lifecycle state machine, upload submission and API
- transcoding: Media toolkit adapter and pipeline executor
- job: Retry policy, worker pool, dispatch and Celery tasks
"""
