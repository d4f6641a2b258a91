"""Blockchain event indexer for the property-share protocol contracts."""

__version__ = "0.1.0"
