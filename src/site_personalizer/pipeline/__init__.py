"""Batch export pipeline: per-site processing, job progress and orchestration."""
