"""
Metric ingestion: a bounded in-memory buffer flushed to the store as
per-period aggregates.
"""

from .ingestor import FlushResult, MetricIngestor

__all__ = ["MetricIngestor", "FlushResult"]
