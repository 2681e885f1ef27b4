# tests/test_api.py
"""
HTTP API: authentication, CRUD with config regeneration, sync and system routes.
"""

from apps.dialplan import routes as dialplan_routes
from apps.dialplan.services import DialplanService
from apps.reconcile.records import md5_credential
from main import app


def read(path):
    with open(path) as f:
        return f.read()


EXTENSION = {
    "extension_number": "1001",
    "name": "Ann",
    "secret": "s3cretpass",
    "codecs": ["g722", "ulaw"],
}

TRUNK = {
    "name": "voipco",
    "host": "sip.voip.example",
    "username": "acct",
    "secret": "pw",
}


# ---- Authentication and health ----

def test_requests_without_api_key_are_refused(client):
    response = client.get("/api/v1/extensions/")
    assert response.status_code in (401, 403)


def test_wrong_api_key_is_refused(client):
    response = client.get("/api/v1/extensions/", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database_status"] == "connected"


def test_root_status(client):
    assert client.get("/").json()["success"] is True


# ---- Extensions ----

def test_create_extension_writes_config_and_reloads(client, auth_headers, pjsip_store, reload_strategy):
    response = client.post("/api/v1/extensions/", json=EXTENSION, headers=auth_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["database_changed"] is True
    assert body["file_changed"] is True
    assert body["engine_reloaded"] is True
    assert body["data"]["has_secret"] is True
    assert "secret" not in body["data"]
    assert reload_strategy.calls == ["pjsip"]

    content = read(pjsip_store.path)
    assert "allow=g722\nallow=ulaw\n" in content
    assert f"md5_cred={md5_credential('1001', 'asterisk', 's3cretpass')}" in content
    assert "s3cretpass" not in content


def test_duplicate_extension_is_rejected(client, auth_headers):
    client.post("/api/v1/extensions/", json=EXTENSION, headers=auth_headers)
    response = client.post("/api/v1/extensions/", json=EXTENSION, headers=auth_headers)
    assert response.status_code == 400


def test_invalid_extension_payload(client, auth_headers):
    payload = dict(EXTENSION, codecs=["ulaw", "mp3"])
    assert client.post("/api/v1/extensions/", json=payload, headers=auth_headers).status_code == 422

    payload = dict(EXTENSION, extension_number="10a1")
    assert client.post("/api/v1/extensions/", json=payload, headers=auth_headers).status_code == 422


def test_extension_name_is_trimmed_and_checked(client, auth_headers):
    for name in ["   ", 'Ann "A"', "Ann\nB"]:
        payload = dict(EXTENSION, name=name)
        assert client.post("/api/v1/extensions/", json=payload, headers=auth_headers).status_code == 422

    response = client.post("/api/v1/extensions/", json=dict(EXTENSION, name="  Ann  "), headers=auth_headers)
    assert response.status_code == 201
    assert client.get("/api/v1/extensions/1001", headers=auth_headers).json()["name"] == "Ann"


def test_get_and_list_extensions(client, auth_headers):
    client.post("/api/v1/extensions/", json=EXTENSION, headers=auth_headers)
    client.post("/api/v1/extensions/", json=dict(EXTENSION, extension_number="1002"), headers=auth_headers)

    listing = client.get("/api/v1/extensions/", headers=auth_headers).json()
    assert listing["count"] == 2
    assert [e["extension_number"] for e in listing["extensions"]] == ["1001", "1002"]

    assert client.get("/api/v1/extensions/1001", headers=auth_headers).json()["name"] == "Ann"
    assert client.get("/api/v1/extensions/9999", headers=auth_headers).status_code == 404


def test_update_extension_rewrites_block(client, auth_headers, pjsip_store):
    client.post("/api/v1/extensions/", json=EXTENSION, headers=auth_headers)

    response = client.put("/api/v1/extensions/1001", json={"context": "sales"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["data"]["context"] == "sales"
    assert "context=sales" in read(pjsip_store.path)
    assert client.put("/api/v1/extensions/9999", json={}, headers=auth_headers).status_code == 404


def test_delete_extension_removes_block(client, auth_headers, pjsip_store):
    with open(pjsip_store.path, "w") as f:
        f.write("[global]\ntype=global\n")
    client.post("/api/v1/extensions/", json=EXTENSION, headers=auth_headers)

    response = client.delete("/api/v1/extensions/1001", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert read(pjsip_store.path) == "[global]\ntype=global\n"
    assert client.delete("/api/v1/extensions/1001", headers=auth_headers).status_code == 404


def test_extension_config_preview(client, auth_headers):
    client.post("/api/v1/extensions/", json=EXTENSION, headers=auth_headers)
    body = client.get("/api/v1/extensions/1001/config", headers=auth_headers).json()
    assert body["config"].startswith("[1001]\ntype=endpoint\n")


def test_reload_failure_is_reported(client, auth_headers, reload_strategy):
    reload_strategy.succeed = False
    body = client.post("/api/v1/extensions/", json=EXTENSION, headers=auth_headers).json()
    assert body["database_changed"] is True
    assert body["file_changed"] is True
    assert body["engine_reloaded"] is False
    assert body["reload_success"] is False


# ---- Trunks ----

def test_create_trunk_adds_outbound_route(client, auth_headers, pjsip_store, dialplan_store, reload_strategy):
    response = client.post("/api/v1/trunks/", json=TRUNK, headers=auth_headers)

    assert response.status_code == 201
    assert "[voipco-identify]" in read(pjsip_store.path)
    assert "@voipco,60)" in read(dialplan_store.path)
    assert reload_strategy.calls == ["all"]


def test_trunk_names_must_not_look_like_extensions(client, auth_headers):
    response = client.post("/api/v1/trunks/", json=dict(TRUNK, name="1001"), headers=auth_headers)
    assert response.status_code == 422


def test_trunk_crud(client, auth_headers, dialplan_store):
    client.post("/api/v1/trunks/", json=TRUNK, headers=auth_headers)

    trunk = client.get("/api/v1/trunks/voipco", headers=auth_headers).json()
    assert trunk["host"] == "sip.voip.example"
    assert "secret" not in trunk

    response = client.put("/api/v1/trunks/voipco", json={"prefix": "0"}, headers=auth_headers)
    assert response.status_code == 200
    assert "exten => _0X.," in read(dialplan_store.path)

    assert client.delete("/api/v1/trunks/voipco", headers=auth_headers).status_code == 200
    assert client.get("/api/v1/trunks/", headers=auth_headers).json()["count"] == 0
    assert "Outbound Routes" not in read(dialplan_store.path)


# ---- Dialplan ----

RULE = {"name": "Reception", "pattern": "100", "app": "Dial", "app_data": "PJSIP/100,30"}


def test_create_rule_regenerates_dialplan(client, auth_headers, dialplan_store, reload_strategy):
    response = client.post("/api/v1/dialplan/rules", json=RULE, headers=auth_headers)

    assert response.status_code == 201
    assert response.json()["file_changed"] is True
    assert "exten => 100,1,NoOp(Reception: ${EXTEN})" in read(dialplan_store.path)
    assert reload_strategy.calls == ["dialplan"]


def test_rule_pattern_may_not_break_the_file(client, auth_headers):
    payload = dict(RULE, pattern="100\n[evil]")
    assert client.post("/api/v1/dialplan/rules", json=payload, headers=auth_headers).status_code == 422


def test_toggle_rule_comments_it_out(client, auth_headers, dialplan_store):
    rule_id = client.post("/api/v1/dialplan/rules", json=RULE, headers=auth_headers).json()["data"]["id"]

    response = client.post(f"/api/v1/dialplan/rules/{rule_id}/toggle", headers=auth_headers)

    assert response.json()["data"]["enabled"] is False
    assert "; exten => 100,1,NoOp(Reception: ${EXTEN})" in read(dialplan_store.path)
    assert client.post("/api/v1/dialplan/rules/999/toggle", headers=auth_headers).status_code == 404


def test_update_and_delete_rule(client, auth_headers, dialplan_store):
    rule_id = client.post("/api/v1/dialplan/rules", json=RULE, headers=auth_headers).json()["data"]["id"]

    client.put(f"/api/v1/dialplan/rules/{rule_id}", json={"pattern": "101"}, headers=auth_headers)
    assert "exten => 101,1," in read(dialplan_store.path)

    assert client.delete(f"/api/v1/dialplan/rules/{rule_id}", headers=auth_headers).status_code == 200
    assert "Dialplan Rules" not in read(dialplan_store.path)
    assert client.get(f"/api/v1/dialplan/rules/{rule_id}", headers=auth_headers).status_code == 404


def test_default_rules_are_created_once(client, auth_headers):
    first = client.post("/api/v1/dialplan/defaults", headers=auth_headers).json()
    second = client.post("/api/v1/dialplan/defaults", headers=auth_headers).json()

    assert len(first["data"]["created"]) == 1
    assert second["data"]["created"] == []
    rules = client.get("/api/v1/dialplan/rules", headers=auth_headers).json()
    assert rules["count"] == 1


def test_outbound_rule(client, auth_headers):
    payload = {"name": "Out", "prefix": "9", "trunk_name": "voipco"}
    response = client.post("/api/v1/dialplan/rules/outbound", json=payload, headers=auth_headers)
    assert response.status_code == 201
    assert response.json()["data"]["pattern"] == "_9X."

    payload = {"name": "Out", "prefix": "9", "trunk_name": "voip co"}
    assert client.post("/api/v1/dialplan/rules/outbound", json=payload, headers=auth_headers).status_code == 400


def test_preview_and_contexts(client, auth_headers):
    client.post("/api/v1/dialplan/rules", json=dict(RULE, context="sales"), headers=auth_headers)

    preview = client.get("/api/v1/dialplan/preview?context=sales", headers=auth_headers).json()
    assert preview["rule_count"] == 1
    assert preview["config"].startswith("[sales]")

    contexts = client.get("/api/v1/dialplan/contexts", headers=auth_headers).json()["contexts"]
    assert "sales" in contexts
    assert "from-internal" in contexts


def test_apply_without_changes(client, auth_headers, reload_strategy):
    body = client.post("/api/v1/dialplan/apply", headers=auth_headers).json()
    assert body["success"] is True
    assert body["file_changed"] is False
    assert reload_strategy.calls == []


def test_live_dialplan(client, auth_headers, db, orchestrator):
    commands = []

    def runner(command):
        commands.append(command)
        return True, "[ Context 'sales' created by 'pbx_config' ]\n"

    app.dependency_overrides[dialplan_routes.get_service] = lambda: DialplanService(db, orchestrator, runner=runner)
    body = client.get("/api/v1/dialplan/live?context=sales", headers=auth_headers).json()
    assert body["success"] is True
    assert commands == ["dialplan show sales"]

    app.dependency_overrides[dialplan_routes.get_service] = lambda: DialplanService(
        db, orchestrator, runner=lambda command: (False, "Unable to connect to remote asterisk"))
    assert client.get("/api/v1/dialplan/live", headers=auth_headers).status_code == 503


# ---- Sync ----

def test_sync_status(client, auth_headers, pjsip_store):
    with open(pjsip_store.path, "w") as f:
        f.write("[2002]\ncontext=from-internal\n")

    body = client.get("/api/v1/sync/status", headers=auth_headers).json()

    assert body["success"] is True
    assert body["extensions"]["summary"]["external_only"] == 1
    assert body["last_auto_sync"] is None


def test_sync_from_external_imports(client, auth_headers, pjsip_store):
    with open(pjsip_store.path, "w") as f:
        f.write("[2002]\ncontext=from-internal\n")

    body = client.post("/api/v1/sync/from-external", json={"kind": "extension"}, headers=auth_headers).json()

    assert body["processed"] == ["2002"]
    assert client.get("/api/v1/extensions/2002", headers=auth_headers).status_code == 200


def test_sync_to_external_single(client, auth_headers, pjsip_store):
    client.post("/api/v1/extensions/", json=EXTENSION, headers=auth_headers)
    with open(pjsip_store.path, "w") as f:
        f.write("")

    body = client.post("/api/v1/sync/to-external", json={"kind": "extension", "identity": "1001"},
                       headers=auth_headers).json()

    assert body["success"] is True
    assert "Extension 1001" in pjsip_store.managed_labels()


def test_sync_all(client, auth_headers, pjsip_store):
    client.post("/api/v1/extensions/", json=EXTENSION, headers=auth_headers)
    client.post("/api/v1/trunks/", json=TRUNK, headers=auth_headers)
    with open(pjsip_store.path, "w") as f:
        f.write("")

    body = client.post("/api/v1/sync/all", json={}, headers=auth_headers).json()

    assert sorted(body["processed"]) == ["1001", "voipco"]
    assert {"Extension 1001", "Trunk voipco"} <= set(pjsip_store.managed_labels())


def test_auto_sync_respects_cooldown(client, auth_headers, clock):
    first = client.post("/api/v1/sync/auto", json={}, headers=auth_headers).json()
    second = client.post("/api/v1/sync/auto", json={}, headers=auth_headers).json()
    forced = client.post("/api/v1/sync/auto", json={"force": True}, headers=auth_headers).json()

    assert first["ran"] is True
    assert second["ran"] is False
    assert forced["ran"] is True
    status = client.get("/api/v1/sync/status", headers=auth_headers).json()
    assert status["last_auto_sync"] is not None


def test_invalid_sync_kind(client, auth_headers):
    response = client.post("/api/v1/sync/to-external", json={"kind": "voicemail"}, headers=auth_headers)
    assert response.status_code == 422


# ---- System ----

def test_manual_reload(client, auth_headers, reload_strategy):
    body = client.post("/api/v1/system/reload", json={"scope": "dialplan"}, headers=auth_headers).json()
    assert body["success"] is True
    assert body["method"] == "fake"
    assert reload_strategy.calls == ["dialplan"]

    assert client.post("/api/v1/system/reload", json={"scope": "voicemail"},
                       headers=auth_headers).status_code == 422


def test_backup_listing(client, auth_headers, pjsip_store):
    with open(pjsip_store.path, "w") as f:
        f.write("[global]\n")
    pjsip_store.backup()

    body = client.get("/api/v1/system/backups/pjsip", headers=auth_headers).json()
    assert len(body["backups"]) == 1
    assert client.get("/api/v1/system/backups/queues", headers=auth_headers).status_code == 404


def test_endpoint_status_without_manager(client, auth_headers):
    body = client.get("/api/v1/system/endpoints", headers=auth_headers).json()
    assert body["status"] == "unknown"
    assert client.get("/api/v1/system/endpoints/1001", headers=auth_headers).status_code == 503
