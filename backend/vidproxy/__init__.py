"""Video Proxy Pipeline backend.

Accepts uploaded videos and asynchronously produces a low-resolution proxy,
a thumbnail and probed media metadata for each one.

Modules:
    - core: Configuration, database, storage gateway, Celery, logging, tracing, metrics
    - modules.video: Job records, lifecycle state machine, submission and HTTP API
    - modules.transcoding: FFmpeg adapter and the processing pipeline
    - modules.job: Retry policy, worker pool and job dispatch
"""

__version__ = "0.1.0"
