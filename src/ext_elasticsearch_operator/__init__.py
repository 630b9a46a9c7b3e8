"""External Elasticsearch Operator."""

__version__ = "0.4.0"
