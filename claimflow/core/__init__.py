"""Core enumerations and configuration."""
