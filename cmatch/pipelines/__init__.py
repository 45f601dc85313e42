"""Pipelines for ingestion, retrieval, structured search, extraction and matching.

Each step is callable on its own so it can serve both the HTTP entry points
and the orchestrator.
"""
