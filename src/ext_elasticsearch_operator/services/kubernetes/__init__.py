"""Kubernetes API access."""

from kubernetes import config

from .crd import build_crd_manifest, ensure_crd
from .resources import ElasticsearchUserClient
from .secret_store import SecretStore, call_kubernetes


def load_kubernetes_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


__all__ = [
    "ElasticsearchUserClient",
    "SecretStore",
    "build_crd_manifest",
    "call_kubernetes",
    "ensure_crd",
    "load_kubernetes_config",
]
