"""Transcoding module: FFmpeg adapter and the per-job processing pipeline."""
