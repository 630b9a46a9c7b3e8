"""Tests for the serial reconcile loop against in-memory backends."""

from __future__ import annotations

import time

from ext_elasticsearch_operator.constants import (
    ANNOTATION_KEEP,
    COND_CONFIGURATION_VALID,
    COND_READY,
    FINALIZER,
    LABEL_MANAGED_BY,
    MANAGED_BY_VALUE,
    SECRET_PASSWORD,
    SECRET_URL,
    SECRET_USERNAME,
)
from ext_elasticsearch_operator.models import ResourceKey
from ext_elasticsearch_operator.reconciler.cache import ResourceCache
from ext_elasticsearch_operator.reconciler.loop import LoopCommand, ReconcileLoop

ES_URL = "https://elastic.example:9200"

SERVER = ResourceKey("default", "server")


def _condition(body, condition_type):
    for cond in body["status"]["conditions"]:
        if cond["type"] == condition_type:
            return cond
    raise AssertionError(f"condition {condition_type} missing")


def _create_server(fake_resources, loop, **kwargs):
    fake_resources.add(
        "server",
        username="server",
        secret_ref="server-elastic",
        prefixes=["blog-articles"],
        permissions="Create",
        **kwargs,
    )
    loop.submit(SERVER)
    loop.drain()


class TestCreate:
    """A freshly created resource gets a role, a user and a Secret."""

    def test_creates_role_user_and_secret(self, fake_resources, fake_es, fake_secrets, loop):
        """Test the full creation path."""
        _create_server(fake_resources, loop)

        assert fake_es.roles["role-server"]["indices"] == [
            {"names": ["blog-articles*"], "privileges": ["read", "write", "create"]}
        ]
        assert fake_es.users["server"]["roles"] == ["role-server"]
        data = fake_secrets.data("default", "server-elastic")
        assert data[SECRET_USERNAME] == "server"
        assert data[SECRET_URL] == ES_URL
        assert len(data[SECRET_PASSWORD]) == 24
        assert fake_es.users["server"]["password"] == data[SECRET_PASSWORD]

    def test_secret_is_owned_and_labelled(self, fake_resources, fake_secrets, loop):
        """Test that the Secret points back to its resource."""
        _create_server(fake_resources, loop)

        secret = fake_secrets.secrets[("default", "server-elastic")]
        assert secret["labels"] == {LABEL_MANAGED_BY: MANAGED_BY_VALUE}
        owner = secret["owner_references"][0]
        assert owner["uid"] == fake_resources.stored("server")["metadata"]["uid"]
        assert owner["kind"] == "ElasticsearchUser"

    def test_finalizer_and_status(self, fake_resources, loop):
        """Test that the finalizer is added and status reports success."""
        _create_server(fake_resources, loop)

        body = fake_resources.stored("server")
        assert FINALIZER in body["metadata"]["finalizers"]
        assert body["status"]["ok"] is True
        assert body["status"]["errorMessage"] is None
        assert body["status"]["observedGeneration"] == 1
        assert _condition(body, COND_READY)["status"] == "True"
        assert _condition(body, COND_CONFIGURATION_VALID)["status"] == "True"

    def test_cache_record_updated(self, fake_resources, loop):
        """Test that a successful pass records its desired state."""
        _create_server(fake_resources, loop)

        record = loop.cache.find(SERVER)
        assert record is not None
        assert record.username == "server"
        assert record.finalizer_present is True
        assert record.last_reconciled_at is not None
        assert record.desired_state.role_name == "role-server"

    def test_events_emitted_for_applied_actions(self, fake_resources, loop, recorder):
        """Test that each applied action is reported as an event."""
        _create_server(fake_resources, loop)

        reasons = [call.args[1] for call in recorder.emit.call_args_list]
        assert reasons == ["RoleApplied", "UserApplied", "SecretApplied"]


class TestIdempotence:
    """A resource in sync causes no writes."""

    def test_second_pass_writes_nothing(self, fake_resources, fake_es, fake_secrets, loop):
        """Test that reconciling an in-sync resource is a no-op."""
        _create_server(fake_resources, loop)
        es_writes = len(fake_es.writes)
        secret_writes = len(fake_secrets.writes)
        status_writes = fake_resources.status_writes

        loop.submit(SERVER)
        loop.drain()

        assert len(fake_es.writes) == es_writes
        assert len(fake_secrets.writes) == secret_writes
        assert fake_resources.status_writes == status_writes

    def test_role_drift_corrected_once(self, fake_resources, fake_es, loop):
        """Test that a manually changed role is restored and then left alone."""
        _create_server(fake_resources, loop)
        fake_es.roles["role-server"]["indices"] = [{"names": ["*"], "privileges": ["all"]}]

        loop.submit(SERVER)
        loop.drain()
        assert fake_es.roles["role-server"]["indices"][0]["names"] == ["blog-articles*"]

        writes = len(fake_es.writes)
        loop.submit(SERVER)
        loop.drain()
        assert len(fake_es.writes) == writes

    def test_user_roles_corrected_without_password_change(self, fake_resources, fake_es, loop):
        """Test that wrong user roles are fixed and the password is kept."""
        _create_server(fake_resources, loop)
        password = fake_es.users["server"]["password"]
        fake_es.users["server"]["roles"] = ["kibana_user"]

        loop.submit(SERVER)
        loop.drain()

        assert fake_es.users["server"]["roles"] == ["role-server"]
        assert fake_es.users["server"]["password"] == password
        assert ("change_password", "server") not in fake_es.writes

    def test_disabled_user_left_alone(self, fake_resources, fake_es, loop):
        """Test that a disabled user does not get its password reset on every pass."""
        _create_server(fake_resources, loop)
        fake_es.users["server"]["enabled"] = False
        writes = len(fake_es.writes)

        loop.submit(SERVER)
        loop.drain()
        loop.submit(SERVER)
        loop.drain()

        assert len(fake_es.writes) == writes
        assert fake_resources.stored("server")["status"]["ok"] is True


class TestSecretAuthority:
    """The Secret decides the password."""

    def test_edited_secret_password_is_pushed(self, fake_resources, fake_es, fake_secrets, loop):
        """Test that a manually edited Secret password resets the user password."""
        _create_server(fake_resources, loop)
        fake_secrets.data("default", "server-elastic")[SECRET_PASSWORD] = "Edited0Password"

        loop.submit(SERVER)
        loop.drain()

        assert fake_es.users["server"]["password"] == "Edited0Password"
        assert fake_secrets.data("default", "server-elastic")[SECRET_PASSWORD] == "Edited0Password"

    def test_deleted_user_recreated_with_secret_password(self, fake_resources, fake_es, fake_secrets, loop):
        """Test that a recreated user keeps the stored password."""
        _create_server(fake_resources, loop)
        password = fake_secrets.data("default", "server-elastic")[SECRET_PASSWORD]
        del fake_es.users["server"]

        loop.submit(SERVER)
        loop.drain()

        assert fake_es.users["server"]["password"] == password

    def test_deleted_secret_gets_new_password(self, fake_resources, fake_es, fake_secrets, loop):
        """Test that a lost Secret is recreated and the user follows it."""
        _create_server(fake_resources, loop)
        old_password = fake_es.users["server"]["password"]
        del fake_secrets.secrets[("default", "server-elastic")]

        loop.submit(SERVER)
        loop.drain()

        new_password = fake_secrets.data("default", "server-elastic")[SECRET_PASSWORD]
        assert new_password != old_password
        assert fake_es.users["server"]["password"] == new_password

    def test_secret_username_and_url_corrected(self, fake_resources, fake_secrets, loop):
        """Test that wrong connection fields in the Secret are patched."""
        _create_server(fake_resources, loop)
        data = fake_secrets.data("default", "server-elastic")
        password = data[SECRET_PASSWORD]
        data[SECRET_URL] = "http://wrong:9200"
        data[SECRET_USERNAME] = "someone"

        loop.submit(SERVER)
        loop.drain()

        data = fake_secrets.data("default", "server-elastic")
        assert data[SECRET_URL] == ES_URL
        assert data[SECRET_USERNAME] == "server"
        assert data[SECRET_PASSWORD] == password


class TestDelete:
    """Deletion runs cleanup before releasing the resource."""

    def test_delete_removes_everything(self, fake_resources, fake_es, fake_secrets, loop):
        """Test that role, user, Secret and the resource are gone."""
        _create_server(fake_resources, loop)

        fake_resources.request_delete("server")
        loop.submit(SERVER)
        loop.drain()

        assert "role-server" not in fake_es.roles
        assert "server" not in fake_es.users
        assert ("default", "server-elastic") not in fake_secrets.secrets
        assert fake_resources.stored("server") is None
        assert len(loop.cache) == 0

    def test_partial_cleanup_keeps_finalizer(self, fake_resources, fake_es, fake_secrets, loop, recorder):
        """Test that a failed deletion leaves the resource in Deleting."""
        _create_server(fake_resources, loop)
        fake_es.fail_on.add("delete_user")

        fake_resources.request_delete("server")
        loop.submit(SERVER)
        loop.drain()

        body = fake_resources.stored("server")
        assert body is not None
        assert FINALIZER in body["metadata"]["finalizers"]
        assert "server" in fake_es.users
        assert ("default", "server-elastic") not in fake_secrets.secrets
        assert recorder.warning.call_args.args[1] == "CleanupFailed"

        fake_es.fail_on.clear()
        loop.submit(SERVER)
        loop.drain()

        assert "server" not in fake_es.users
        assert fake_resources.stored("server") is None

    def test_keep_annotation_preserves_elasticsearch_objects(self, fake_resources, fake_es, fake_secrets, loop):
        """Test that the keep annotation only removes the Secret."""
        _create_server(fake_resources, loop, annotations={ANNOTATION_KEEP: "true"})

        fake_resources.request_delete("server")
        loop.submit(SERVER)
        loop.drain()

        assert "role-server" in fake_es.roles
        assert "server" in fake_es.users
        assert ("default", "server-elastic") not in fake_secrets.secrets
        assert fake_resources.stored("server") is None

    def test_cleanup_after_restart(self, fake_resources, fake_es, fake_secrets, loop):
        """Test that a deletion made while stopped is cleaned up after restart."""
        _create_server(fake_resources, loop)
        fake_resources.request_delete("server")

        restarted = ReconcileLoop(
            resources=fake_resources,
            elasticsearch=fake_es,
            secrets=fake_secrets,
            cache=ResourceCache(),
            elasticsearch_url=ES_URL,
        )
        restarted.request_recycle()
        restarted.drain()

        assert "role-server" not in fake_es.roles
        assert "server" not in fake_es.users
        assert ("default", "server-elastic") not in fake_secrets.secrets
        assert fake_resources.stored("server") is None

    def test_vanished_resource_forgotten(self, fake_resources, loop):
        """Test that a resource gone from the API is dropped from the cache."""
        _create_server(fake_resources, loop)
        del fake_resources.objects[("default", "server")]

        loop.submit(SERVER)
        loop.drain()

        assert loop.cache.find(SERVER) is None


class TestConfigurationErrors:
    """Invalid specs are reported on the resource and not applied."""

    def test_duplicate_username_rejected(self, fake_resources, fake_es, fake_secrets, loop):
        """Test that the second resource claiming a username is rejected."""
        _create_server(fake_resources, loop)
        password = fake_es.users["server"]["password"]
        fake_resources.add("intruder", username="server", secret_ref="intruder-elastic")

        loop.submit(ResourceKey("default", "intruder"))
        loop.drain()

        body = fake_resources.stored("intruder")
        assert body["status"]["ok"] is False
        condition = _condition(body, COND_CONFIGURATION_VALID)
        assert condition["status"] == "False"
        assert condition["reason"] == "DuplicateIdentity"
        assert ("default", "intruder-elastic") not in fake_secrets.secrets
        assert fake_es.users["server"]["password"] == password
        assert fake_es.roles["role-server"]["indices"][0]["names"] == ["blog-articles*"]

    def test_deleting_duplicate_leaves_owner_untouched(self, fake_resources, fake_es, fake_secrets, loop):
        """Test that deleting the rejected resource does not remove the owner's objects."""
        _create_server(fake_resources, loop)
        fake_resources.add("intruder", username="server", secret_ref="intruder-elastic")
        loop.submit(ResourceKey("default", "intruder"))
        loop.drain()

        fake_resources.request_delete("intruder")
        loop.submit(ResourceKey("default", "intruder"))
        loop.drain()

        assert fake_resources.stored("intruder") is None
        assert "server" in fake_es.users
        assert "role-server" in fake_es.roles
        assert ("default", "server-elastic") in fake_secrets.secrets

    def test_duplicate_secret_ref_rejected(self, fake_resources, loop):
        """Test that two resources cannot share a Secret."""
        _create_server(fake_resources, loop)
        fake_resources.add("other", username="other", secret_ref="server-elastic")

        loop.submit(ResourceKey("default", "other"))
        loop.drain()

        body = fake_resources.stored("other")
        assert _condition(body, COND_CONFIGURATION_VALID)["reason"] == "DuplicateIdentity"

    def test_invalid_spec_reported(self, fake_resources, fake_es, loop, recorder):
        """Test that empty prefixes produce an InvalidSpec condition."""
        fake_resources.add("broken", username="broken", secret_ref="broken-elastic", prefixes=[])

        loop.submit(ResourceKey("default", "broken"))
        loop.drain()

        body = fake_resources.stored("broken")
        assert body["status"]["ok"] is False
        assert "prefixes" in body["status"]["errorMessage"]
        assert _condition(body, COND_CONFIGURATION_VALID)["reason"] == "InvalidSpec"
        assert FINALIZER in body["metadata"]["finalizers"]
        assert fake_es.writes == []
        assert recorder.warning.call_args.args[1] == "ValidateFailed"

    def test_invalid_spec_not_reported_twice(self, fake_resources, loop):
        """Test that an unchanged error does not rewrite the status."""
        fake_resources.add("broken", username="broken", secret_ref="broken-elastic", permissions="Admin")
        loop.submit(ResourceKey("default", "broken"))
        loop.drain()
        writes = fake_resources.status_writes

        loop.submit(ResourceKey("default", "broken"))
        loop.drain()

        assert fake_resources.status_writes == writes


class TestTransientErrors:
    """Backend failures are reported and retried on the next pass."""

    def test_elasticsearch_failure_reported(self, fake_resources, fake_es, loop):
        """Test that an unreachable Elasticsearch marks the resource not ok."""
        fake_es.fail_on.add("get_role")
        fake_resources.add("server", username="server", secret_ref="server-elastic")

        loop.submit(SERVER)
        loop.drain()

        body = fake_resources.stored("server")
        assert body["status"]["ok"] is False
        assert "get_role" in body["status"]["errorMessage"]
        assert loop.cache.find(SERVER).desired_state is None

        fake_es.fail_on.clear()
        loop.submit(SERVER)
        loop.drain()

        body = fake_resources.stored("server")
        assert body["status"]["ok"] is True
        assert "server" in fake_es.users

    def test_secret_failure_does_not_stop_loop(self, fake_resources, fake_secrets, loop):
        """Test that other resources are still processed after a failure."""
        fake_secrets.fail_on.add("get")
        fake_resources.add("a", username="a", secret_ref="a-elastic")
        fake_resources.add("b", username="b", secret_ref="b-elastic")

        loop.submit(ResourceKey("default", "a"))
        loop.submit(ResourceKey("default", "b"))
        processed = loop.drain()

        assert processed == 2
        assert fake_resources.stored("a")["status"]["ok"] is False
        assert fake_resources.stored("b")["status"]["ok"] is False

    def test_fetch_failure_skips_pass(self, fake_resources, loop):
        """Test that a failed resource fetch is not fatal."""
        fake_resources.add("server", username="server", secret_ref="server-elastic")
        fake_resources.fail_on.add("get")

        loop.submit(SERVER)
        assert loop.drain() == 1
        assert "status" not in fake_resources.stored("server")


class TestIdentityChange:
    """Renaming the user or the Secret removes what the old identity owned."""

    def test_username_change_removes_old_user(self, fake_resources, fake_es, fake_secrets, loop):
        """Test that the old user and role are deleted after a rename."""
        _create_server(fake_resources, loop)
        fake_resources.update_spec("server", username="renamed")

        loop.submit(SERVER)
        loop.drain()

        assert "server" not in fake_es.users
        assert "role-server" not in fake_es.roles
        assert fake_es.users["renamed"]["roles"] == ["role-renamed"]
        assert fake_secrets.data("default", "server-elastic")[SECRET_USERNAME] == "renamed"

    def test_secret_ref_change_removes_old_secret(self, fake_resources, fake_secrets, loop):
        """Test that the old Secret is deleted after a secretRef change."""
        _create_server(fake_resources, loop)
        password = fake_secrets.data("default", "server-elastic")[SECRET_PASSWORD]
        fake_resources.update_spec("server", secretRef="server-credentials")

        loop.submit(SERVER)
        loop.drain()

        assert ("default", "server-elastic") not in fake_secrets.secrets
        new_data = fake_secrets.data("default", "server-credentials")
        assert new_data[SECRET_USERNAME] == "server"
        assert new_data[SECRET_PASSWORD] != password

    def test_failed_rename_keeps_old_username_reserved(self, fake_resources, fake_es, loop):
        """Test that a rename that fails holds the old username until cleanup succeeds."""
        first = ResourceKey("default", "first")
        late = ResourceKey("default", "late")
        fake_resources.add("first", username="alice", secret_ref="first-elastic")
        loop.submit(first)
        loop.drain()

        fake_resources.update_spec("first", username="alice2")
        fake_es.fail_on.add("put_user")
        loop.submit(first)
        loop.drain()

        fake_resources.add("late", username="alice", secret_ref="late-elastic")
        loop.submit(late)
        loop.drain()
        assert "already managed by default/first" in fake_resources.stored("late")["status"]["errorMessage"]

        fake_es.fail_on.clear()
        loop.submit(first)
        loop.drain()
        assert set(fake_es.users) == {"alice2"}

        loop.submit(late)
        loop.drain()
        assert set(fake_es.users) == {"alice", "alice2"}
        assert fake_resources.stored("late")["status"]["ok"] is True


class TestQueue:
    """Queue, resync and recycle behavior."""

    def test_duplicate_submissions_coalesce(self, loop):
        """Test that a key waiting in the queue is not enqueued twice."""
        assert loop.submit(SERVER) is True
        assert loop.submit(SERVER) is False

    def test_resync_enqueues_known_resources(self, fake_resources, loop):
        """Test that a resync reconciles every cached resource."""
        _create_server(fake_resources, loop)

        loop.request_resync()
        processed = loop.drain()

        assert processed == 2

    def test_recycle_rebuilds_cache(self, fake_resources, loop):
        """Test that a recycle drops resources that disappeared unnoticed."""
        _create_server(fake_resources, loop)
        del fake_resources.objects[("default", "server")]
        fake_resources.add("other", username="other", secret_ref="other-elastic")

        loop.request_recycle()
        loop.drain()

        assert loop.cache.find(SERVER) is None
        assert loop.cache.find(ResourceKey("default", "other")) is not None
        assert loop.cache_built is True

    def test_recycle_admits_oldest_first(self, fake_resources, loop):
        """Test that the oldest resource wins an identity collision on rebuild."""
        fake_resources.add("first", username="shared", secret_ref="first-elastic")
        fake_resources.add("second", username="shared", secret_ref="second-elastic")

        loop.request_recycle()
        loop.drain()

        assert fake_resources.stored("first")["status"]["ok"] is True
        assert fake_resources.stored("second")["status"]["ok"] is False

    def test_recycle_failure_keeps_cache(self, fake_resources, loop):
        """Test that a failed listing leaves the cache alone."""
        _create_server(fake_resources, loop)
        fake_resources.fail_on.add("list_all")

        loop.request_recycle()
        loop.drain()

        assert loop.cache.find(SERVER) is not None

    def test_recycle_keeps_current_owner(self, fake_resources, fake_es, fake_secrets, loop):
        """Test that a rejected older resource does not take an identity over on rebuild."""
        older = ResourceKey("default", "older")
        fake_resources.add("older", username="other", secret_ref="older-elastic")
        _create_server(fake_resources, loop)
        loop.submit(older)
        loop.drain()
        password = fake_secrets.data("default", "server-elastic")[SECRET_PASSWORD]

        fake_resources.update_spec("older", username="server")
        loop.submit(older)
        loop.drain()
        loop.request_recycle()
        loop.drain()

        assert fake_resources.stored("server")["status"]["ok"] is True
        assert "already managed by default/server" in fake_resources.stored("older")["status"]["errorMessage"]
        assert fake_es.users["server"]["password"] == password
        assert fake_secrets.data("default", "server-elastic")[SECRET_PASSWORD] == password

    def test_recycle_keeps_invalid_owner_state(self, fake_resources, fake_es, fake_secrets, loop):
        """Test that a resource with a broken spec still cleans up after a rebuild."""
        _create_server(fake_resources, loop)
        fake_resources.update_spec("server", prefixes=[])
        loop.submit(SERVER)
        loop.drain()

        loop.request_recycle()
        loop.drain()
        fake_resources.request_delete("server")
        loop.submit(SERVER)
        loop.drain()

        assert fake_resources.stored("server") is None
        assert fake_es.users == {}
        assert fake_es.roles == {}
        assert fake_secrets.secrets == {}

    def test_stop_command_ends_drain(self, loop):
        """Test that a queued stop ends processing."""
        loop.submit(LoopCommand.STOP)
        assert loop.drain() == 0

    def test_worker_becomes_ready(self, fake_resources, loop):
        """Test that the started worker reports ready after the first rebuild."""
        fake_resources.add("server", username="server", secret_ref="server-elastic")
        assert loop.ready is False

        loop.start()
        try:
            deadline = time.monotonic() + 5
            while not loop.ready and time.monotonic() < deadline:
                time.sleep(0.01)
            assert loop.ready is True
        finally:
            loop.stop()
        assert loop.ready is False
