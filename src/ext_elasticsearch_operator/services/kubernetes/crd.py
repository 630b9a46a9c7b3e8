"""CustomResourceDefinition for the ElasticsearchUser kind."""

from __future__ import annotations

import logging
from typing import Any

from kubernetes import client

from ...constants import (
    API_GROUP,
    API_VERSION,
    CRD_NAME,
    FIELD_MANAGER,
    KIND_ELASTICSEARCH_USER,
    PLURAL_ELASTICSEARCH_USERS,
    SINGULAR_ELASTICSEARCH_USER,
)
from .secret_store import call_kubernetes

logger = logging.getLogger(__name__)


def build_crd_manifest() -> dict[str, Any]:
    """Build the CRD manifest for ElasticsearchUser."""
    spec_schema = {
        "type": "object",
        "required": ["secretRef", "username", "prefixes", "permissions"],
        "properties": {
            "secretRef": {"type": "string"},
            "username": {"type": "string"},
            "prefixes": {"type": "array", "items": {"type": "string"}},
            "permissions": {"type": "string", "enum": ["Read", "Write", "Create"]},
        },
    }
    status_schema = {
        "type": "object",
        "x-kubernetes-preserve-unknown-fields": True,
        "properties": {
            "ok": {"type": "boolean"},
            "errorMessage": {"type": "string", "nullable": True},
            "observedGeneration": {"type": "integer"},
            "conditions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "x-kubernetes-preserve-unknown-fields": True,
                },
            },
        },
    }
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": CRD_NAME},
        "spec": {
            "group": API_GROUP,
            "names": {
                "kind": KIND_ELASTICSEARCH_USER,
                "plural": PLURAL_ELASTICSEARCH_USERS,
                "singular": SINGULAR_ELASTICSEARCH_USER,
                "shortNames": ["esuser"],
            },
            "scope": "Namespaced",
            "versions": [
                {
                    "name": API_VERSION,
                    "served": True,
                    "storage": True,
                    "subresources": {"status": {}},
                    "additionalPrinterColumns": [
                        {"name": "Username", "type": "string", "jsonPath": ".spec.username"},
                        {"name": "Secret", "type": "string", "jsonPath": ".spec.secretRef"},
                        {"name": "OK", "type": "boolean", "jsonPath": ".status.ok"},
                    ],
                    "schema": {
                        "openAPIV3Schema": {
                            "type": "object",
                            "required": ["spec"],
                            "properties": {"spec": spec_schema, "status": status_schema},
                        }
                    },
                }
            ],
        },
    }


def ensure_crd(api: client.ApiextensionsV1Api) -> None:
    """Create the CRD, or patch it when it already exists.

    Raises:
        KubernetesApiError: For any failure other than an existing definition
    """
    manifest = build_crd_manifest()
    try:
        api.create_custom_resource_definition(body=manifest, field_manager=FIELD_MANAGER)
        logger.info(f"Created CustomResourceDefinition {CRD_NAME}")
    except client.exceptions.ApiException as e:
        if e.status != 409:
            raise
        call_kubernetes(
            "patch_crd",
            lambda: api.patch_custom_resource_definition(
                name=CRD_NAME, body=manifest, field_manager=FIELD_MANAGER
            ),
        )
        logger.info(f"Updated CustomResourceDefinition {CRD_NAME}")
