"""Shared helpers: query construction, pagination and input validators."""
