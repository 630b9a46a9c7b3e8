"""Fetching the current Elasticsearch and Secret state of a resource."""

from __future__ import annotations

import logging

from .. import metrics
from ..constants import KIND_ELASTICSEARCH_USER, SECRET_PASSWORD, SECRET_URL, SECRET_USERNAME
from ..models import DesiredState, ObservedState, RolePolicy
from ..services.elasticsearch.base import ElasticsearchAdmin
from ..services.kubernetes.secret_store import SecretStore

logger = logging.getLogger(__name__)


class ObservedStateFetcher:
    """Reads role, user and Secret and probes the stored credentials."""

    def __init__(self, elasticsearch: ElasticsearchAdmin, secrets: SecretStore) -> None:
        self.elasticsearch = elasticsearch
        self.secrets = secrets

    def fetch(self, desired: DesiredState) -> ObservedState:
        """Observe the state targeted by ``desired``.

        Backend failures propagate as TransientBackendError. A rejected login
        is recorded in ``login_succeeds`` and is not an error.
        """
        observed = ObservedState()

        role = self.elasticsearch.get_role(desired.role_name)
        if role is not None:
            observed.role_exists = True
            observed.role_policy_matches = RolePolicy.from_api(role).matches(desired.role_policy)
            if not observed.role_policy_matches:
                metrics.drift_detected_total.labels(
                    kind=KIND_ELASTICSEARCH_USER, resource_type="role"
                ).inc()

        user = self.elasticsearch.get_user(desired.username)
        if user is not None:
            observed.user_exists = True
            observed.user_enabled = user.get("enabled", True) is not False
            observed.user_roles_match = set(user.get("roles") or []) == set(desired.user.roles)
            if not observed.user_roles_match:
                metrics.drift_detected_total.labels(
                    kind=KIND_ELASTICSEARCH_USER, resource_type="user"
                ).inc()

        data = self.secrets.get(desired.secret.namespace, desired.secret.name)
        if data is not None:
            observed.secret_exists = True
            observed.secret_password = data.get(SECRET_PASSWORD) or None
            observed.secret_url = data.get(SECRET_URL)
            observed.secret_username = data.get(SECRET_USERNAME)

        if observed.user_exists and not observed.user_enabled:
            # A disabled user never authenticates
            logger.debug(f"User {desired.username} is disabled, login check skipped")
        elif observed.user_exists and observed.secret_password:
            observed.login_succeeds = self.elasticsearch.authenticate(
                desired.username, observed.secret_password
            )
            if not observed.login_succeeds:
                logger.info(f"Stored password of {desired.username} does not log in")
                metrics.drift_detected_total.labels(
                    kind=KIND_ELASTICSEARCH_USER, resource_type="password"
                ).inc()

        return observed
