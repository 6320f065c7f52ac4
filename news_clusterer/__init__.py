"""News Clusterer - story clustering, deduplication and merge learning."""

__version__ = "0.1.0"
