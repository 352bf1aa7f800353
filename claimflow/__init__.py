"""
claimflow - healthcare claim lifecycle core.

Validation, multi-channel submission, batch processing and status
tracking for healthcare service claims.
"""

__version__ = "0.1.0"
