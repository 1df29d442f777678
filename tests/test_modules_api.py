"""
Tests for the platform-admin module entitlement routes.
"""

import uuid

import pytest

from app.db.models.security_audit import AuditLog
from app.db.models.system_modules import ModuleEntitlementAudit, OrganizationModuleEntitlement
from app.db.session import SessionLocal
from services.entitlements import service


@pytest.fixture
def org(make_org):
    return make_org("Acme Joinery")


@pytest.fixture
def admin_headers(platform_owner, auth_headers):
    return auth_headers(platform_owner)


def put_module(client, headers, org_id, module_key, body):
    return client.put(f"/admin/orgs/{org_id}/modules/{module_key}", json=body, headers=headers)


class TestListing:
    def test_lists_every_catalog_module(self, client, org, admin_headers):
        resp = client.get(f"/admin/orgs/{org.id}/modules", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["organization"] == {"id": org.id, "name": "Acme Joinery"}
        keys = [e["module_key"] for e in body["entitlements"]]
        assert keys == sorted(keys)
        assert len(keys) == 11
        assert body["warnings"] == []

    def test_new_org_starts_without_the_configurator(self, client, org, admin_headers):
        body = client.get(f"/admin/orgs/{org.id}/modules", headers=admin_headers).json()
        by_key = {e["module_key"]: e for e in body["entitlements"]}
        assert by_key["furniture_configurator"]["enabled"] is False
        assert by_key["products_bom"]["enabled"] is True
        assert by_key["furniture_configurator"]["dependency_keys"] == ["products_bom", "cutlist_optimizer"]

    def test_unseeded_org_reads_as_disabled(self, client, make_org, admin_headers):
        bare = make_org("Bare", seed=False)
        body = client.get(f"/admin/orgs/{bare.id}/modules", headers=admin_headers).json()
        assert all(e["enabled"] is False and e["status"] == "inactive" for e in body["entitlements"])

    def test_list_organizations(self, client, org, admin_headers):
        resp = client.get("/admin/orgs", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["organizations"] == [{"id": org.id, "name": "Acme Joinery"}]

    def test_create_organization_seeds_entitlements(self, client, admin_headers):
        resp = client.post("/admin/orgs", json={"name": "Beta Cabinets"}, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json()["seeded_entitlements"] == 11

    def test_unknown_org_is_404(self, client, admin_headers):
        resp = client.get(f"/admin/orgs/{uuid.uuid4()}/modules", headers=admin_headers)
        assert resp.status_code == 404


class TestDependencyGate:
    def test_disable_blocked_by_enabled_dependents(self, client, org, admin_headers):
        resp = put_module(client, admin_headers, org.id, "products_bom", {"enabled": False})
        assert resp.status_code == 409
        body = resp.json()
        assert body["module_key"] == "products_bom"
        assert body["error"]
        assert body["dependent_modules"] == [
            {"module_key": "cutlist_optimizer", "module_name": "Cutlist & Material Optimization"},
            {"module_key": "orders_fulfillment", "module_name": "Orders & Fulfillment"},
        ]
        assert "missing_dependencies" not in body

    def test_enable_blocked_by_missing_dependency(self, client, org, admin_headers):
        assert put_module(client, admin_headers, org.id, "cutlist_optimizer", {"enabled": False}).status_code == 200

        resp = put_module(client, admin_headers, org.id, "furniture_configurator", {"enabled": True})
        assert resp.status_code == 409
        body = resp.json()
        assert body["module_key"] == "furniture_configurator"
        assert body["missing_dependencies"] == ["cutlist_optimizer"]
        assert "dependent_modules" not in body

    def test_past_due_dependency_does_not_satisfy_gate(self, client, org, admin_headers, set_entitlement):
        set_entitlement(org, "cutlist_optimizer", status="past_due")
        resp = put_module(client, admin_headers, org.id, "furniture_configurator", {"enabled": True})
        assert resp.status_code == 409
        assert resp.json()["missing_dependencies"] == ["cutlist_optimizer"]

    def test_enable_allowed_when_dependencies_enabled(self, client, org, admin_headers):
        resp = put_module(client, admin_headers, org.id, "furniture_configurator", {"enabled": True})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["entitlement"]["enabled"] is True
        assert body["entitlement"]["module_key"] == "furniture_configurator"

    def test_rejected_toggle_changes_nothing(self, client, db, org, admin_headers):
        put_module(client, admin_headers, org.id, "products_bom", {"enabled": False})
        db.expire_all()
        row = (
            db.query(OrganizationModuleEntitlement)
            .filter_by(org_id=org.id, module_key="products_bom")
            .one()
        )
        assert row.enabled is True
        assert db.query(ModuleEntitlementAudit).count() == 0

    def test_conflict_is_recorded_in_http_audit(self, client, db, org, admin_headers):
        put_module(client, admin_headers, org.id, "products_bom", {"enabled": False})
        entry = db.query(AuditLog).filter(AuditLog.status_code == 409).one()
        assert entry.actor == "owner@unity.example.com"
        assert entry.success is False


class TestAuditTrail:
    def test_change_writes_audit_row(self, client, db, org, platform_owner, admin_headers):
        resp = put_module(
            client,
            admin_headers,
            org.id,
            "staff_time_analysis",
            {"enabled": False, "billing_model": "subscription", "notes": "paused", "source": "support-desk"},
        )
        assert resp.status_code == 200

        rows = db.query(ModuleEntitlementAudit).all()
        assert len(rows) == 1
        audit_row = rows[0]
        assert audit_row.enabled_before is True
        assert audit_row.enabled_after is False
        assert audit_row.billing_model_before == "manual"
        assert audit_row.billing_model_after == "subscription"
        assert audit_row.changed_by == platform_owner.id
        assert audit_row.change_reason == "update"
        assert audit_row.meta["source"] == "support-desk"
        assert audit_row.meta["notes_after"] == "paused"

    def test_no_op_writes_no_audit_row(self, client, db, org, admin_headers):
        put_module(client, admin_headers, org.id, "staff_time_analysis", {"enabled": False})
        put_module(client, admin_headers, org.id, "staff_time_analysis", {"enabled": False})
        assert db.query(ModuleEntitlementAudit).count() == 1

    def test_first_write_on_bare_org_is_an_insert(self, client, db, make_org, admin_headers):
        bare = make_org("Bare", seed=False)
        resp = put_module(client, admin_headers, bare.id, "quoting_proposals", {"enabled": True})
        assert resp.status_code == 200
        audit_row = db.query(ModuleEntitlementAudit).one()
        assert audit_row.change_reason == "insert"
        assert audit_row.enabled_before is None

    def test_audit_listing(self, client, org, admin_headers):
        put_module(client, admin_headers, org.id, "staff_time_analysis", {"enabled": False})
        resp = client.get(f"/admin/orgs/{org.id}/modules/audit", headers=admin_headers)
        assert resp.status_code == 200
        entries = resp.json()["audit"]
        assert [e["module_key"] for e in entries] == ["staff_time_analysis"]
        assert entries[0]["metadata"]["source"] == "platform-admin"


class TestConcurrentWrites:
    def test_row_inserted_by_another_writer_is_overwritten(self, client, db, make_org, admin_headers, monkeypatch):
        bare = make_org("Bare", seed=False)
        gate = service.check_dependency_gate

        def gate_then_competing_insert(session, org_id, module, enabled):
            gate(session, org_id, module, enabled)
            with SessionLocal() as other:
                other.add(
                    OrganizationModuleEntitlement(
                        org_id=org_id,
                        module_key=module.module_key,
                        enabled=False,
                        billing_model="trial",
                        status="grace",
                        source="other-admin",
                    )
                )
                other.commit()

        monkeypatch.setattr(service, "check_dependency_gate", gate_then_competing_insert)
        resp = put_module(
            client, admin_headers, bare.id, "quoting_proposals", {"enabled": True, "billing_model": "subscription"}
        )
        assert resp.status_code == 200

        db.expire_all()
        rows = db.query(OrganizationModuleEntitlement).filter_by(org_id=bare.id).all()
        assert len(rows) == 1
        assert (rows[0].enabled, rows[0].billing_model, rows[0].status, rows[0].source) == (
            True,
            "subscription",
            "active",
            "platform-admin",
        )
        audit_row = db.query(ModuleEntitlementAudit).one()
        assert audit_row.change_reason == "update"
        assert (audit_row.enabled_before, audit_row.billing_model_before) == (False, "trial")


class TestValidation:
    @pytest.mark.parametrize(
        "body",
        [
            {"enabled": True, "billing_model": "barter"},
            {"enabled": True, "status": "paused"},
            {"ends_at": "2000-01-01T00:00:00Z"},
            {"billing_model": ""},
            {"status": ""},
            ["enabled"],
        ],
    )
    def test_bad_bodies_are_400(self, client, org, admin_headers, body):
        resp = put_module(client, admin_headers, org.id, "quoting_proposals", body)
        assert resp.status_code == 400

    def test_non_boolean_enabled_keeps_current_value(self, client, org, admin_headers):
        resp = put_module(client, admin_headers, org.id, "quoting_proposals", {"enabled": "yes", "notes": "x"})
        assert resp.status_code == 200
        ent = resp.json()["entitlement"]
        assert ent["enabled"] is True
        assert ent["notes"] == "x"

        put_module(client, admin_headers, org.id, "quoting_proposals", {"enabled": False})
        resp = put_module(client, admin_headers, org.id, "quoting_proposals", {"enabled": 1})
        assert resp.status_code == 200
        assert resp.json()["entitlement"]["enabled"] is False

    def test_missing_body_is_400(self, client, org, admin_headers):
        resp = client.put(f"/admin/orgs/{org.id}/modules/quoting_proposals", headers=admin_headers)
        assert resp.status_code == 400

    def test_invalid_org_id(self, client, admin_headers):
        resp = put_module(client, admin_headers, "not-a-uuid", "quoting_proposals", {"enabled": True})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid orgId"

    def test_invalid_module_key(self, client, org, admin_headers):
        resp = put_module(client, admin_headers, org.id, "payroll", {"enabled": True})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid moduleKey"

    def test_module_key_is_case_insensitive(self, client, org, admin_headers):
        resp = put_module(client, admin_headers, org.id, "Quoting_Proposals", {"enabled": False})
        assert resp.status_code == 200
        assert resp.json()["entitlement"]["module_key"] == "quoting_proposals"

    def test_missing_org_is_404(self, client, admin_headers):
        resp = put_module(client, admin_headers, str(uuid.uuid4()), "quoting_proposals", {"enabled": True})
        assert resp.status_code == 404

    def test_dates_round_trip(self, client, org, admin_headers):
        resp = put_module(
            client,
            admin_headers,
            org.id,
            "quoting_proposals",
            {"starts_at": "2026-01-01T00:00:00Z", "ends_at": "2027-01-01T00:00:00Z", "billing_model": "yearly_license"},
        )
        assert resp.status_code == 200
        ent = resp.json()["entitlement"]
        assert ent["starts_at"].startswith("2026-01-01T00:00:00")
        assert ent["ends_at"].startswith("2027-01-01T00:00:00")
        assert ent["billing_model"] == "yearly_license"


class TestAccessControl:
    def test_anonymous_is_401(self, client, org):
        assert client.get(f"/admin/orgs/{org.id}/modules").status_code == 401

    def test_org_member_is_403(self, client, org, make_user, add_member, auth_headers):
        staff = make_user("staff@acme.example.com")
        add_member(org, staff, role="owner")
        resp = put_module(client, auth_headers(staff, org.id), org.id, "quoting_proposals", {"enabled": False})
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Platform admin access required"
