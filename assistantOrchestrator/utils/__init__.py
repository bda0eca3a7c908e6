"""Shared utilities: error handling and logging helpers."""
