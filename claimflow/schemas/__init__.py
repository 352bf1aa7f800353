"""Pydantic records, request DTOs and operation results."""
