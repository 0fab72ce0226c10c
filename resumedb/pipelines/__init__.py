"""Pipelines for resume ingestion, search, record management, and retention.

Each step is callable independently so the API handlers and the scheduled
retention sweep share the same code paths.
"""
