"""Backend package: config, DB models, stores, pipelines, APIs.

This package orchestrates knowledge ingestion, vector retrieval, structured
catalog search, challenge extraction and matching, and execution logging.
"""
