"""Base Elasticsearch security admin interface."""

from __future__ import annotations

from typing import Any, Protocol


class ElasticsearchAdmin(Protocol):
    """Protocol defining the security API operations used by the reconciler."""

    def get_role(self, name: str) -> dict[str, Any] | None:
        """Get a role definition, or None if the role does not exist."""
        ...

    def put_role(self, name: str, indices: list[dict[str, Any]]) -> None:
        """Create or replace a role."""
        ...

    def delete_role(self, name: str) -> bool:
        """Delete a role. Returns False if it was already absent."""
        ...

    def get_user(self, username: str) -> dict[str, Any] | None:
        """Get a user, or None if the user does not exist."""
        ...

    def put_user(
        self,
        username: str,
        roles: list[str],
        metadata: dict[str, Any],
        password: str | None = None,
    ) -> None:
        """Create or update a user; the password is left unchanged when omitted."""
        ...

    def change_password(self, username: str, password: str) -> None:
        """Set a user's password."""
        ...

    def delete_user(self, username: str) -> bool:
        """Delete a user. Returns False if it was already absent."""
        ...

    def authenticate(self, username: str, password: str) -> bool:
        """Check whether the credentials log in."""
        ...
