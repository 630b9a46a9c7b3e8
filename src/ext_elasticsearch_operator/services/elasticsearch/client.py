"""Elasticsearch security API client implementation."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, TypeVar

from elasticsearch import (
    ApiError,
    AuthenticationException,
    Elasticsearch,
    NotFoundError,
    TransportError,
)

from ... import metrics
from ...constants import SUPERUSER_ROLE
from ...exceptions import ElasticsearchApiError, NotSuperuserError
from ...utils.errors import sanitize_exception
from ...utils.rate_limit import call_with_rate_limit_retry, elasticsearch_limiter

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class ElasticsearchClient:
    """Security API client authenticated as the operator's superuser."""

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        verify_certs: bool = True,
        request_timeout: float = 5.0,
        client: Elasticsearch | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            url: Elasticsearch URL
            username: Operator login
            password: Operator password
            verify_certs: Verify the server certificate
            request_timeout: Per-request timeout in seconds
            client: Preconfigured client (used by tests)
        """
        self.url = url
        self.username = username
        self.client = client or Elasticsearch(
            url,
            basic_auth=(username, password),
            verify_certs=verify_certs,
            ssl_show_warn=verify_certs,
            request_timeout=request_timeout,
        )

    def _call(self, operation: str, func: Callable[[], _T]) -> _T:
        """Issue one request with rate limiting, metrics and error wrapping.

        Expected outcomes such as NotFoundError are re-raised unchanged so the
        caller can interpret them; other failures become ElasticsearchApiError.
        """

        def limited() -> _T:
            elasticsearch_limiter.wait()
            return func()

        start_time = time.time()
        result = "success"
        try:
            return call_with_rate_limit_retry(limited, api_type="elasticsearch")
        except (NotFoundError, AuthenticationException):
            result = "not_found_or_denied"
            raise
        except ApiError as e:
            result = "error"
            raise ElasticsearchApiError(
                operation, sanitize_exception(e), status=e.meta.status
            ) from e
        except TransportError as e:
            result = "error"
            raise ElasticsearchApiError(operation, sanitize_exception(e)) from e
        finally:
            metrics.api_call_total.labels(
                api_type="elasticsearch", operation=operation, result=result
            ).inc()
            metrics.api_call_duration_seconds.labels(
                api_type="elasticsearch", operation=operation
            ).observe(time.time() - start_time)

    def get_role(self, name: str) -> dict[str, Any] | None:
        """Get a role definition."""
        try:
            response = self._call("get_role", lambda: self.client.security.get_role(name=name))
        except NotFoundError:
            return None
        return response.body.get(name)

    def put_role(self, name: str, indices: list[dict[str, Any]]) -> None:
        """Create or replace a role."""
        self._call(
            "put_role",
            lambda: self.client.security.put_role(name=name, indices=indices),
        )
        logger.info(f"Applied role {name}")

    def delete_role(self, name: str) -> bool:
        """Delete a role."""
        try:
            self._call("delete_role", lambda: self.client.security.delete_role(name=name))
        except NotFoundError:
            return False
        logger.info(f"Deleted role {name}")
        return True

    def get_user(self, username: str) -> dict[str, Any] | None:
        """Get a user."""
        try:
            response = self._call(
                "get_user", lambda: self.client.security.get_user(username=username)
            )
        except NotFoundError:
            return None
        return response.body.get(username)

    def put_user(
        self,
        username: str,
        roles: list[str],
        metadata: dict[str, Any],
        password: str | None = None,
    ) -> None:
        """Create or update a user.

        Without ``password`` an existing user keeps its current password.
        """
        kwargs: dict[str, Any] = {"username": username, "roles": roles, "metadata": metadata}
        if password is not None:
            kwargs["password"] = password
        self._call("put_user", lambda: self.client.security.put_user(**kwargs))
        logger.info(f"Applied user {username}")

    def change_password(self, username: str, password: str) -> None:
        """Set a user's password."""
        self._call(
            "change_password",
            lambda: self.client.security.change_password(username=username, password=password),
        )
        logger.info(f"Changed password of user {username}")

    def delete_user(self, username: str) -> bool:
        """Delete a user."""
        try:
            self._call(
                "delete_user", lambda: self.client.security.delete_user(username=username)
            )
        except NotFoundError:
            return False
        logger.info(f"Deleted user {username}")
        return True

    def authenticate(self, username: str, password: str) -> bool:
        """Check whether the credentials log in.

        A rejected login is a normal answer; transport failures raise.
        """
        login = self.client.options(basic_auth=(username, password))
        try:
            self._call("authenticate", lambda: login.security.authenticate())
        except AuthenticationException:
            return False
        return True

    def connection_ok(self) -> dict[str, Any]:
        """Verify that the operator credentials work and carry the superuser role.

        Returns:
            The authenticate response of the operator login

        Raises:
            NotSuperuserError: If the login is rejected or lacks the superuser role
            ElasticsearchApiError: If Elasticsearch cannot be reached
        """
        try:
            response = self._call("authenticate", lambda: self.client.security.authenticate())
        except AuthenticationException as e:
            raise NotSuperuserError(
                f"Elasticsearch rejected the credentials of {self.username}"
            ) from e
        identity = response.body
        if SUPERUSER_ROLE not in (identity.get("roles") or []):
            raise NotSuperuserError(
                f"Elasticsearch user {self.username} is not a {SUPERUSER_ROLE}"
            )
        logger.info(f"Connected to Elasticsearch at {self.url} as {self.username}")
        return identity
