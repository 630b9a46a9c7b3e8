"""In-memory records of tracked ElasticsearchUser resources."""

from __future__ import annotations

from typing import Iterator

from .. import metrics
from ..exceptions import DuplicateIdentityError
from ..models import CachedResourceRecord, ResourceKey


class ResourceCache:
    """Records of tracked resources, indexed by uid, username and Secret.

    Owned by the reconcile loop and only mutated from its worker thread. At most
    one record holds a given username, and at most one holds a given Secret.
    """

    def __init__(self) -> None:
        self._records: dict[str, CachedResourceRecord] = {}
        self._usernames: dict[str, str] = {}
        self._secrets: dict[tuple[str, str], str] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, uid: object) -> bool:
        return uid in self._records

    def __iter__(self) -> Iterator[CachedResourceRecord]:
        return iter(list(self._records.values()))

    def get(self, uid: str) -> CachedResourceRecord | None:
        return self._records.get(uid)

    def find(self, key: ResourceKey) -> CachedResourceRecord | None:
        """Find the record of a resource by namespace and name."""
        for record in self._records.values():
            if record.key == key:
                return record
        return None

    def keys(self) -> list[ResourceKey]:
        return sorted(record.key for record in self._records.values())

    def reserve(
        self,
        uid: str,
        key: ResourceKey,
        username: str,
        secret_ref: str,
    ) -> CachedResourceRecord:
        """Admit a resource under an identity, or confirm it already holds it.

        An existing record keeps its history. If the identity changed, the
        record holds both the previous and the new identity until
        release_previous is called after a successful pass.

        Raises:
            DuplicateIdentityError: If another resource holds the username or Secret
        """
        owner = self._usernames.get(username)
        if owner is not None and owner != uid:
            other = self._records[owner].key
            raise DuplicateIdentityError(f"username {username!r} is already managed by {other}")

        secret_key = (key.namespace, secret_ref)
        owner = self._secrets.get(secret_key)
        if owner is not None and owner != uid:
            other = self._records[owner].key
            raise DuplicateIdentityError(f"secret {secret_ref!r} is already managed by {other}")

        record = self._records.get(uid)
        if record is None:
            record = CachedResourceRecord(uid=uid, key=key, username=username, secret_ref=secret_ref)
            self._records[uid] = record
        else:
            record.key = key
            record.username = username
            record.secret_ref = secret_ref

        record.held_usernames.add(username)
        record.held_secrets.add(secret_key)
        self._usernames[username] = uid
        self._secrets[secret_key] = uid
        metrics.cached_resources.set(len(self._records))
        return record

    def release_previous(self, uid: str) -> None:
        """Release identities a record held before its current one."""
        record = self._records.get(uid)
        if record is None:
            return
        for username in record.held_usernames - {record.username}:
            if self._usernames.get(username) == uid:
                del self._usernames[username]
        for secret_key in record.held_secrets - {record.secret_key}:
            if self._secrets.get(secret_key) == uid:
                del self._secrets[secret_key]
        record.held_usernames = {record.username}
        record.held_secrets = {record.secret_key}

    def adopt(self, record: CachedResourceRecord) -> None:
        """Take over a record from a previous generation of the cache.

        Raises:
            DuplicateIdentityError: If another record already holds one of its identities
        """
        for username in record.held_usernames:
            owner = self._usernames.get(username)
            if owner is not None and owner != record.uid:
                raise DuplicateIdentityError(
                    f"username {username!r} is already managed by {self._records[owner].key}"
                )
        for secret_key in record.held_secrets:
            owner = self._secrets.get(secret_key)
            if owner is not None and owner != record.uid:
                raise DuplicateIdentityError(
                    f"secret {secret_key[1]!r} is already managed by {self._records[owner].key}"
                )

        self._records[record.uid] = record
        for username in record.held_usernames:
            self._usernames[username] = record.uid
        for secret_key in record.held_secrets:
            self._secrets[secret_key] = record.uid
        metrics.cached_resources.set(len(self._records))

    def discard(self, uid: str) -> CachedResourceRecord | None:
        """Forget a resource and release every identity it holds."""
        record = self._records.pop(uid, None)
        if record is not None:
            for username in record.held_usernames:
                if self._usernames.get(username) == uid:
                    del self._usernames[username]
            for secret_key in record.held_secrets:
                if self._secrets.get(secret_key) == uid:
                    del self._secrets[secret_key]
        metrics.cached_resources.set(len(self._records))
        return record

    def clear(self) -> None:
        self._records.clear()
        self._usernames.clear()
        self._secrets.clear()
        metrics.cached_resources.set(0)
