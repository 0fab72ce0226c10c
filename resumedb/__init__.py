"""Backend package: DB models, storage, pipelines, APIs.

This package orchestrates resume upload, parsing, field normalization,
search, and retention of soft-deleted records.
"""
