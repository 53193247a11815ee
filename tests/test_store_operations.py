"""Tests for request, environment, group, and settings operations."""

import pytest

from reqstash.errors import ConflictError, NotFoundError, ValidationError
from reqstash.models import JsonBody, ProxyResponse, QueryParam, TextBody, Variable
from tests.conftest import make_response, read_document

# ── requests ─────────────────────────────────────────────────────────────


class TestCreateRequest:
    def test_defaults(self, store):
        req = store.create_request("Login", "http://api/login")
        assert len(req.id) == 16
        assert req.method == "GET"
        assert req.group == "default"
        assert req.body == TextBody("")
        assert req.created_at == req.updated_at
        assert req.created_at.endswith("+00:00")

    def test_json_body_stored_structured(self, store, store_path):
        store.create_request("Login", "http://api/login", method="POST", body='{"a":1}')
        on_disk = read_document(store_path)["requests"][0]
        assert on_disk["body"] == {"a": 1}
        assert store.find_request("Login").body == JsonBody({"a": 1})

    def test_text_body_stored_as_string(self, store, store_path):
        store.create_request("Form", "http://api", body="a=1&b=2")
        assert read_document(store_path)["requests"][0]["body"] == "a=1&b=2"

    def test_optional_fields_omitted_when_empty(self, store, store_path):
        store.create_request("A", "http://x")
        on_disk = read_document(store_path)["requests"][0]
        for key in ("bodyType", "bodyText", "bodyJson", "bodyForm", "lastResponse"):
            assert key not in on_disk

    def test_editor_fields_round_trip(self, store):
        store.create_request(
            "A",
            "http://x",
            body_type="form",
            body_form=[{"key": "a", "value": "1", "enabled": True}],
            params=[QueryParam(key="q", value="x", enabled=True)],
        )
        req = store.find_request("A")
        assert req.body_type == "form"
        assert req.body_form[0].key == "a"
        assert req.body_form[0].enabled is True
        assert req.params == [QueryParam(key="q", value="x", enabled=True)]

    def test_duplicate_name_conflict(self, store):
        store.create_request("Login", "http://a")
        with pytest.raises(ConflictError, match="A request named 'Login' already exists"):
            store.create_request("Login", "http://b")
        assert len(store.list_requests()) == 1

    def test_names_are_case_sensitive(self, store):
        store.create_request("Login", "http://a")
        store.create_request("login", "http://b")
        assert len(store.list_requests()) == 2

    @pytest.mark.parametrize("name,url", [("", "http://x"), ("A", "")])
    def test_required_fields(self, store, store_path, name, url):
        with pytest.raises(ValidationError):
            store.create_request(name, url)
        assert not store_path.exists()


class TestUpdateRequest:
    def test_replaces_fields(self, store):
        req = store.create_request("A", "http://x", method="POST", headers={"X": "1"})
        updated = store.update_request(req.id, "B", "http://y")
        assert updated.name == "B"
        assert updated.url == "http://y"
        assert updated.method == "GET"
        assert updated.headers == {}
        assert updated.created_at == req.created_at

    def test_keeps_last_response_unless_given(self, store):
        req = store.create_request("A", "http://x")
        store.record_response(req.id, make_response(body={"t": 1}))
        store.update_request(req.id, "A", "http://y")
        assert store.get_request(req.id).last_response.body == JsonBody({"t": 1})

        store.update_request(req.id, "A", "http://y", last_response={"status": "201", "body": "x"})
        assert store.get_request(req.id).last_response.body == TextBody("x")

    def test_keep_own_name(self, store):
        req = store.create_request("A", "http://x")
        assert store.update_request(req.id, "A", "http://z").url == "http://z"

    def test_name_taken_by_another(self, store):
        store.create_request("A", "http://x")
        b = store.create_request("B", "http://x")
        with pytest.raises(ConflictError):
            store.update_request(b.id, "A", "http://x")

    def test_unknown_id(self, store):
        with pytest.raises(NotFoundError):
            store.update_request("nope", "A", "http://x")


class TestDeleteAndDuplicate:
    def test_delete(self, store):
        req = store.create_request("A", "http://x")
        store.delete_request(req.id)
        assert store.list_requests() == []

    def test_delete_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.delete_request("nope")

    def test_duplicate(self, store):
        req = store.create_request("A", "http://x", body='{"k":[1]}')
        store.record_response(req.id, make_response(body={"t": 1}))

        dup = store.duplicate_request(req.id)

        assert dup.id != req.id
        assert dup.name == "A (Copy)"
        assert dup.body == JsonBody({"k": [1]})
        assert dup.last_response is None
        assert store.get_request(req.id).last_response is not None

    def test_duplicate_twice(self, store):
        req = store.create_request("A", "http://x")
        store.duplicate_request(req.id)
        assert store.duplicate_request(req.id).name == "A (Copy) (2)"

    def test_get_request_unknown(self, store):
        with pytest.raises(NotFoundError, match="Request not found: nope"):
            store.get_request("nope")


class TestRecordResponse:
    def test_persists_response(self, store, store_path):
        req = store.create_request("A", "http://x")
        store.record_response(req.id, make_response(201, body={"id": 7}, headers={"X": "y"}))
        on_disk = read_document(store_path)["requests"][0]["lastResponse"]
        assert on_disk == {
            "status": "201 OK",
            "statusCode": 201,
            "headers": {"X": "y"},
            "body": {"id": 7},
        }

    def test_elapsed_not_persisted(self, store):
        req = store.create_request("A", "http://x")
        store.record_response(req.id, make_response(elapsed_ms=999.0))
        assert store.get_request(req.id).last_response.elapsed_ms == 0.0

    def test_unknown_request(self, store):
        with pytest.raises(NotFoundError):
            store.record_response("nope", ProxyResponse())


# ── environments ─────────────────────────────────────────────────────────


class TestEnvironments:
    def test_create(self, store):
        env = store.create_environment("staging")
        environments, current = store.list_environments()
        assert [e.name for e in environments] == ["Default", "staging"]
        assert current != env.id

    def test_create_duplicate(self, store):
        with pytest.raises(ConflictError, match="Environment 'Default' already exists"):
            store.create_environment("Default")

    def test_create_requires_name(self, store):
        with pytest.raises(ValidationError):
            store.create_environment("")

    def test_rename(self, store):
        env = store.create_environment("a")
        assert store.update_environment(env.id, name="b").name == "b"

    def test_rename_to_taken_name(self, store):
        env = store.create_environment("a")
        with pytest.raises(ConflictError):
            store.update_environment(env.id, name="Default")

    def test_update_variables_only(self, store):
        env = store.create_environment("a")
        updated = store.update_environment(env.id, variables=[{"key": "k", "value": "v"}])
        assert updated.name == "a"
        assert updated.variables == [Variable(key="k", value="v")]

    def test_update_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.update_environment("nope", name="x")

    def test_activate(self, store):
        env = store.create_environment("prod")
        store.activate_environment(env.id)
        assert store.current_environment().name == "prod"

    def test_activate_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.activate_environment("nope")

    def test_delete_last_refused(self, store):
        (only,), _ = store.list_environments()
        with pytest.raises(ConflictError, match="Cannot delete the last environment"):
            store.delete_environment(only.id)

    def test_delete_current_reassigns(self, store):
        prod = store.create_environment("prod")
        store.activate_environment(prod.id)
        store.delete_environment(prod.id)
        environments, current = store.list_environments()
        assert [e.name for e in environments] == ["Default"]
        assert current == environments[0].id

    def test_delete_other_keeps_current(self, store):
        prod = store.create_environment("prod")
        _, before = store.list_environments()
        store.delete_environment(prod.id)
        assert store.list_environments()[1] == before

    def test_delete_unknown(self, store):
        store.create_environment("prod")
        with pytest.raises(NotFoundError):
            store.delete_environment("nope")

    def test_copy(self, store):
        store.save_variables([Variable(key="host", value="a"), Variable(key="port", value="1")])
        _, default_id = store.list_environments()
        target = store.create_environment("copy")
        copied = store.copy_environment(target.id, default_id)
        assert [v.key for v in copied.variables] == ["host", "port"]

        # deep copy: changing the source leaves the target alone
        store.save_variables([Variable(key="host", value="b")])
        environments, _ = store.list_environments()
        by_name = {e.name: e for e in environments}
        assert by_name["copy"].variables[0].value == "a"

    def test_copy_unknown_source(self, store):
        target = store.create_environment("t")
        with pytest.raises(NotFoundError, match="Source environment"):
            store.copy_environment(target.id, "nope")


class TestVariables:
    def test_save_replaces_current(self, store):
        store.save_variables([Variable(key="a", value="1")])
        store.save_variables([{"key": "b", "value": "2"}])
        assert store.current_environment().variables == [Variable(key="b", value="2")]

    def test_saved_to_current_only(self, store):
        prod = store.create_environment("prod")
        store.activate_environment(prod.id)
        store.save_variables([Variable(key="a", value="1")])
        environments, _ = store.list_environments()
        assert {e.name: len(e.variables) for e in environments} == {"Default": 0, "prod": 1}

    def test_list_resolves_env_references(self, store):
        store.save_variables(
            [
                Variable(key="plain", value="x"),
                Variable(key="tok", value="$TOK"),
                Variable(key="m", value="$MISSING"),
            ]
        )
        listed = store.list_variables(env={"TOK": "secret"})
        assert [(v.key, v.resolved_value, v.is_env_var) for v in listed] == [
            ("plain", "x", False),
            ("tok", "secret", True),
            ("m", "$MISSING", True),
        ]


# ── groups and settings ──────────────────────────────────────────────────


class TestGroups:
    def test_create(self, store):
        store.create_group("auth")
        assert [g.name for g in store.list_groups()] == ["default", "auth"]

    def test_create_duplicate(self, store):
        with pytest.raises(ConflictError, match="Group already exists"):
            store.create_group("default")

    def test_delete_empty(self, store):
        group = store.create_group("auth")
        store.delete_group(group.id)
        assert [g.name for g in store.list_groups()] == ["default"]

    def test_delete_default_refused(self, store):
        (default,) = store.list_groups()
        with pytest.raises(ConflictError, match="Cannot delete default group"):
            store.delete_group(default.id)

    def test_delete_with_requests_refused(self, store):
        group = store.create_group("auth")
        store.create_request("Login", "http://x", group="auth")
        with pytest.raises(ConflictError, match="Cannot delete group with requests"):
            store.delete_group(group.id)

    def test_delete_unknown(self, store):
        with pytest.raises(NotFoundError, match="Group not found"):
            store.delete_group("nope")


class TestWordWrap:
    def test_toggle(self, store, store_path):
        store.set_word_wrap(True)
        assert read_document(store_path)["wordWrap"] is True
        store.set_word_wrap(False)
        assert store.load().word_wrap is False
