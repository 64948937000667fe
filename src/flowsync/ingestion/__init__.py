"""Ingestion layer.

This package turns raw stream payloads into typed update events. It never
touches the world store; the pipeline hands the events over.
"""

from flowsync.ingestion.decoder import EventNormalizer, NormalizerStats

__all__ = ["EventNormalizer", "NormalizerStats"]
