"""Backend services: the Elasticsearch security API and the Kubernetes API."""
