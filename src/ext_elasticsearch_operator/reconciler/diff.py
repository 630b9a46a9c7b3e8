"""Decision table turning desired and observed state into corrective actions.

Guards are evaluated top to bottom and an action is emitted only when its guard
holds, so nothing is written to Elasticsearch or Kubernetes without a detected
mismatch. The order of the returned list is the order of execution: the role
exists before the user that references it, and a user's password is set in
Elasticsearch before the Secret is written to carry it.

The Secret is authoritative for the password. A new password is generated only
when there is no stored one, and an existing stored password is never replaced.
"""

from __future__ import annotations

from typing import Any, Callable

from ..builders.desired_state import generate_password
from ..constants import LABEL_MANAGED_BY, MANAGED_BY_VALUE, SECRET_PASSWORD, SECRET_URL, SECRET_USERNAME
from ..models import DesiredState, ObservedState
from .actions import (
    Action,
    CreateSecret,
    DeleteRole,
    DeleteSecret,
    DeleteUser,
    PatchSecret,
    PutRole,
    PutUser,
    ResetPassword,
    UpdateUser,
)


def diff(
    desired: DesiredState,
    observed: ObservedState,
    owner_references: list[dict[str, Any]] | None = None,
    generate: Callable[[], str] = generate_password,
) -> list[Action]:
    """Compute the ordered actions converging ``observed`` to ``desired``.

    Args:
        desired: Target state
        observed: Current state
        owner_references: Owner references for a newly created Secret
        generate: Password generator

    Returns:
        Ordered list of actions; empty when already in sync
    """
    actions: list[Action] = []
    user = desired.user
    shape = desired.secret

    if not observed.role_exists or not observed.role_policy_matches:
        actions.append(PutRole(name=desired.role_name, indices=desired.role_policy.to_api()))

    new_password = None
    password = observed.secret_password
    if password is None:
        new_password = generate()
        password = new_password

    if not observed.user_exists:
        actions.append(
            PutUser(
                username=user.username,
                roles=user.roles,
                metadata=dict(user.metadata),
                password=password,
            )
        )
    else:
        if not observed.user_roles_match:
            actions.append(
                UpdateUser(username=user.username, roles=user.roles, metadata=dict(user.metadata))
            )
        if new_password is not None:
            actions.append(ResetPassword(username=user.username, password=new_password))
        elif observed.login_succeeds is False:
            # Push the Secret's password to Elasticsearch
            actions.append(ResetPassword(username=user.username, password=password))

    if not observed.secret_exists:
        actions.append(
            CreateSecret(
                namespace=shape.namespace,
                name=shape.name,
                data=shape.render(password),
                owner_references=owner_references,
                labels={LABEL_MANAGED_BY: MANAGED_BY_VALUE},
            )
        )
    else:
        changes: dict[str, str] = {}
        if observed.secret_url != shape.url:
            changes[SECRET_URL] = shape.url
        if observed.secret_username != shape.username:
            changes[SECRET_USERNAME] = shape.username
        if new_password is not None:
            changes[SECRET_PASSWORD] = new_password
        if changes:
            actions.append(PatchSecret(namespace=shape.namespace, name=shape.name, data=changes))

    return actions


def stale_identity_actions(previous: DesiredState | None, desired: DesiredState) -> list[Action]:
    """Deletions of objects a resource owned under its previous identity.

    A changed username leaves the old user and role behind; a changed
    secretRef leaves the old Secret behind. The old Elasticsearch objects are
    kept when the resource carries the keep annotation.
    """
    if previous is None:
        return []

    actions: list[Action] = []
    if previous.username != desired.username and not desired.spec.keep:
        actions.append(DeleteUser(username=previous.username))
        actions.append(DeleteRole(name=previous.role_name))
    if (previous.secret.namespace, previous.secret.name) != (
        desired.secret.namespace,
        desired.secret.name,
    ):
        actions.append(DeleteSecret(namespace=previous.secret.namespace, name=previous.secret.name))
    return actions
