import pytest

from app.config.isolation_policies import build_policy_registry
from app.config.settings import Settings
from app.database.sql_engine import ConfigurationError
from app.modules.isolation import strategies
from app.modules.isolation.strategies import GAME_SCOPED_TABLES, SharedSchemaStrategy, get_isolation_strategy
from app.modules.provisioning.schemas import ProvisionRequest
from app.modules.tenancy.schemas import TenantRef

TZOLAK = TenantRef(id="lib-tzolak", slug="tzolak", name="Tzolak Tavern", owner_id="u-owner")


def test_shared_mode_filters_by_library_column(strategy):
    query = strategy.scope_query(TZOLAK, "library_events")
    assert query.table_name == "library_events"
    assert query.filters == [("library_id", "eq", "lib-tzolak")]


def test_shared_mode_filters_game_children_through_games(strategy):
    query = strategy.scope_query(TZOLAK, "game_admin_data", columns="id, purchase_price")
    assert query.columns == "id, purchase_price, games!inner(library_id)"
    assert query.filters == [("games.library_id", "eq", "lib-tzolak")]


def test_shared_mode_filters_session_players_through_two_parents(strategy):
    query = strategy.scope_query(TZOLAK, "game_session_players")
    assert "game_sessions!inner(games!inner(library_id))" in query.columns
    assert query.filters == [("game_sessions.games.library_id", "eq", "lib-tzolak")]


def test_game_scoped_tables_have_isolation_rules():
    registered = set(build_policy_registry().tables())
    assert GAME_SCOPED_TABLES <= registered



def test_scoped_query_returns_only_tenant_rows(strategy, supabase):
    supabase.seed(
        "library_events",
        {"id": "e-1", "library_id": "lib-tzolak", "title": "Game night"},
        {"id": "e-2", "library_id": "lib-games", "title": "Other night"},
    )
    rows = strategy.scope_query(TZOLAK, "library_events").execute().data
    assert [r["id"] for r in rows] == ["e-1"]


def test_user_token_switches_to_a_user_client(strategy, supabase, monkeypatch):
    seen = []

    def user_client(token):
        seen.append(token)
        return supabase

    monkeypatch.setattr(strategies.SupabaseClient, "get_user_client", user_client)
    strategy.scope_query(TZOLAK, "games", access_token="tok-member")
    assert seen == ["tok-member"]


def test_shared_provision_goes_through_supabase(strategy, supabase):
    result = strategy.provision(ProvisionRequest(
        slug="newclub", display_name="New Club", owner_email="new@example.com", owner_id="u-new"
    ))
    assert result.url == "https://newclub.gametaverns.com/login"
    assert strategy.resolve("newclub.gametaverns.com").id == result.tenant_id


def test_strategy_exposes_its_directory(strategy):
    assert strategy.directory is strategy.resolver.directory
    assert isinstance(strategy, SharedSchemaStrategy)


def test_unknown_isolation_mode():
    with pytest.raises(ValueError):
        get_isolation_strategy(Settings(isolation_mode="sharded"))


def test_schema_mode_needs_a_database_url(monkeypatch):
    monkeypatch.setattr("app.database.sql_engine.settings", Settings(database_url=None))
    with pytest.raises(ConfigurationError):
        get_isolation_strategy(Settings(isolation_mode="schema"))
