"""Reporting utilities for lossgrad."""

from .metrics import CsvSink, JsonlSink

__all__ = ["CsvSink", "JsonlSink"]
