"""Shared utilities: errors, logging and the Celery application."""
