import pytest
from typer.testing import CliRunner

from app.core.exceptions import StoreUnavailable
from app.database.sql_engine import ConfigurationError
from app.modules.provisioning.service import TenantProvisioner
from app.modules.provisioning.store import InMemoryProvisioningStore
from app.modules.tenancy.reserved import ReservedSlugGuard
from app.scripts import create_tenant as script
from tests.fakes import ROOT

runner = CliRunner()


@pytest.fixture
def store(monkeypatch):
    store = InMemoryProvisioningStore()
    monkeypatch.setattr(script, "_build_provisioner", lambda: TenantProvisioner(store, ReservedSlugGuard(), ROOT))
    # Keep the suite fast; cost is covered by test_password_hash_uses_bcrypt
    monkeypatch.setattr(script, "hash_password", lambda password: f"hashed:{password}")
    return store


def invoke(*args):
    return runner.invoke(script.cli, list(args))


def test_creates_tenant_and_prints_login_url(store):
    result = invoke("tzolak", "Tzolak Tavern", "owner@example.com", "s3cret-pass")
    assert result.exit_code == 0, result.output
    assert "Library 'Tzolak Tavern' created in schema tenant_tzolak" in result.output
    assert result.output.strip().endswith("https://tzolak.gametaverns.com/login")
    [user] = store.users.values()
    assert user["password_hash"] == "hashed:s3cret-pass"


def test_invalid_slug_exits_before_touching_the_store(store):
    store.fail("slug_exists", AssertionError("store must not be touched"))
    result = invoke("ab", "Too Short", "owner@example.com", "s3cret-pass")
    assert result.exit_code == 1
    assert "invalid slug 'ab'" in result.output
    assert store.write_count == 0


def test_reserved_slug_exits_with_error(store):
    result = invoke("www", "World Wide", "owner@example.com", "s3cret-pass")
    assert result.exit_code == 1
    assert "reserved" in result.output
    assert store.tenants == {}


def test_taken_slug_exits_with_error(store):
    assert invoke("tzolak", "Tzolak", "owner@example.com", "s3cret-pass").exit_code == 0
    result = invoke("tzolak", "Tzolak Again", "other@example.com", "s3cret-pass")
    assert result.exit_code == 1
    assert "already taken" in result.output
    assert len(store.tenants) == 1


def test_short_password_and_bad_email_are_rejected(store):
    assert invoke("tzolak", "Tzolak", "owner@example.com", "short").exit_code == 1
    result = invoke("tzolak", "Tzolak", "not-an-email", "s3cret-pass")
    assert result.exit_code == 1
    assert "invalid owner email" in result.output
    assert store.write_count == 0


def test_existing_owner_is_attached(store):
    invoke("first-club", "First", "owner@example.com", "s3cret-pass")
    result = invoke("second-club", "Second", "owner@example.com", "another-pass")
    assert result.exit_code == 0
    assert "Attached to existing account owner@example.com" in result.output
    assert len(store.users) == 1


def test_transient_failure_is_retried_once(store):
    store.fail("slug_exists", StoreUnavailable("connection reset"))
    result = invoke("tzolak", "Tzolak", "owner@example.com", "s3cret-pass")
    assert result.exit_code == 0, result.output
    assert len(store.tenants) == 1


def test_second_transient_failure_gives_up(store):
    store.fail("slug_exists", StoreUnavailable("connection reset"), times=2)
    result = invoke("tzolak", "Tzolak", "owner@example.com", "s3cret-pass")
    assert result.exit_code == 1
    assert "step 'check_slug'" in result.output
    assert "Nothing was created" in result.output


def test_failed_step_is_reported(store):
    store.fail("create_schema", RuntimeError("permission denied for database"))
    result = invoke("tzolak", "Tzolak", "owner@example.com", "s3cret-pass")
    assert result.exit_code == 1
    assert "step 'schema'" in result.output
    assert store.tenants == {}


def test_missing_database_url(monkeypatch):
    def unconfigured():
        raise ConfigurationError("DATABASE_URL not set")

    monkeypatch.setattr(script, "_build_provisioner", unconfigured)
    monkeypatch.setattr(script, "hash_password", lambda password: "x")
    result = invoke("tzolak", "Tzolak", "owner@example.com", "s3cret-pass")
    assert result.exit_code == 1
    assert "DATABASE_URL not set" in result.output


def test_password_hash_uses_bcrypt():
    import bcrypt

    hashed = script.hash_password("s3cret-pass")
    assert hashed.startswith("$2b$12$")
    assert bcrypt.checkpw(b"s3cret-pass", hashed.encode("utf-8"))
