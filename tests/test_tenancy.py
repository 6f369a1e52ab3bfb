"""Tests for the tenant registry, workshop resolution and token scoping."""

import pytest

from mechhub.models import MessageTemplate, Role, User, WorkshopConfig
from mechhub.models_super import Workshop
from mechhub.tenancy import TenantRegistry, validate_slug


class TestValidateSlug:
    """Tests for validate_slug."""

    @pytest.mark.parametrize("slug", ["demo", "taller-norte", "t1"])
    def test_accepts_valid(self, slug):
        assert validate_slug(slug) == slug

    @pytest.mark.parametrize("slug", ["", "Demo", "../etc", "taller_sur", "a b"])
    def test_rejects_invalid(self, slug):
        with pytest.raises(ValueError):
            validate_slug(slug)


class TestTenantRegistry:
    """Tests for TenantRegistry."""

    def test_create_tenant_scaffolds_database(self, tmp_path):
        registry = TenantRegistry(tmp_path)
        try:
            workshop = registry.create_tenant("norte", "Taller Norte")

            assert workshop.slug == "norte"
            assert len(workshop.api_token) == 64
            assert (tmp_path / "tenants" / "norte" / "db.sqlite").exists()
            assert registry.list_slugs() == ["norte"]

            with registry.session("norte") as db:
                assert db.query(WorkshopConfig).one().workshop_name == "Taller Norte"
                assert {r.name for r in db.query(Role).all()} == {"Admin", "Technician"}
                assert db.query(User).filter(User.username == "admin").count() == 1
                triggers = {t.trigger_status for t in db.query(MessageTemplate).all()}
                assert {"pending", "quoted", "delivered", "reminder"} <= triggers
        finally:
            registry.close_all()

    def test_create_tenant_is_idempotent(self, tmp_path):
        registry = TenantRegistry(tmp_path)
        try:
            first = registry.create_tenant("norte", "Taller Norte")
            second = registry.create_tenant("norte", "Otro nombre")
            assert first.id == second.id
            with registry.super_session() as super_db:
                assert super_db.query(Workshop).count() == 1
        finally:
            registry.close_all()

    def test_bootstrap_creates_default_workshop(self, tmp_path):
        registry = TenantRegistry(tmp_path)
        try:
            registry.bootstrap()
            assert registry.list_slugs() == ["demo"]
        finally:
            registry.close_all()

    def test_delete_tenant(self, tmp_path):
        registry = TenantRegistry(tmp_path)
        try:
            registry.create_tenant("norte", "Taller Norte")
            registry.delete_tenant("norte")
            assert not registry.exists("norte")
            assert registry.list_slugs() == []
        finally:
            registry.close_all()

    def test_session_rejects_bad_slug(self, tmp_path):
        registry = TenantRegistry(tmp_path)
        with pytest.raises(ValueError):
            registry.session("../super")

    def test_tenants_are_isolated(self, registry, db):
        registry.create_tenant("norte", "Taller Norte")
        db.query(WorkshopConfig).first().workshop_name = "Cambiado"
        db.commit()
        with registry.session("norte") as other:
            assert other.query(WorkshopConfig).one().workshop_name == "Taller Norte"


class TestWorkshopResolution:
    """Tests for slug resolution and token scoping on tenant routes."""

    def test_unknown_slug_is_404(self, client, token_for):
        response = client.get("/api/nadie/clients", headers=token_for(slug="nadie"))
        assert response.status_code == 404

    def test_invalid_slug_is_404(self, client, token_for):
        response = client.get("/api/Demo_X/clients", headers=token_for(slug="Demo_X"))
        assert response.status_code == 404

    def test_inactive_workshop_is_403(self, client, registry, admin_headers):
        with registry.super_session() as super_db:
            super_db.query(Workshop).filter(Workshop.slug == "demo").first().status = "inactive"
            super_db.commit()
        assert client.get("/api/demo/clients", headers=admin_headers).status_code == 403

    def test_missing_token_is_401(self, client):
        assert client.get("/api/demo/clients").status_code == 401

    def test_invalid_token_is_401(self, client):
        response = client.get("/api/demo/clients", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_token_from_other_workshop_is_403(self, client, registry, token_for):
        registry.create_tenant("norte", "Taller Norte")
        response = client.get("/api/demo/clients", headers=token_for(slug="norte"))
        assert response.status_code == 403

    def test_superuser_token_works_everywhere(self, client, token_for):
        headers = token_for(slug=None, role="superadmin", username="root")
        assert client.get("/api/demo/clients", headers=headers).status_code == 200

    def test_missing_permission_is_403(self, client, token_for):
        headers = token_for(role="technician", permissions=["orders"])
        assert client.get("/api/demo/clients", headers=headers).status_code == 403
        assert client.get("/api/demo/orders", headers=headers).status_code == 200


class TestPublicEndpoints:
    """Tests for the unauthenticated endpoints."""

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_info_lists_active_workshops(self, client, registry):
        registry.create_tenant("norte", "Taller Norte")
        with registry.super_session() as super_db:
            super_db.query(Workshop).filter(Workshop.slug == "norte").first().status = "inactive"
            super_db.commit()

        data = client.get("/api/info").json()
        assert [w["slug"] for w in data["workshops"]] == ["demo"]
