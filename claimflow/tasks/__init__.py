"""Celery tasks for claim background jobs."""
