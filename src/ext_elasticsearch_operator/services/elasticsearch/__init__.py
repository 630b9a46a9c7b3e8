"""Elasticsearch security API access."""

from .base import ElasticsearchAdmin
from .client import ElasticsearchClient

__all__ = ["ElasticsearchAdmin", "ElasticsearchClient"]
