import pytest
from typer.testing import CliRunner

from app.config.isolation_policies import SERVICE_ONLY_TABLES, build_policy_registry
from app.core.exceptions import PolicyDenied
from app.core.policy_engine import (
    Direct, HasTenantRole, Operation, PolicyEngine, Principal, RowOwner, render_policy_sql
)
from app.modules.isolation.store import InMemoryRowSource, PolicyEnforcedStore
from app.scripts.export_rls_policies import cli

OWNER = Principal("u-owner")
MODERATOR = Principal("u-mod")
MEMBER = Principal("u-member")
STRANGER = Principal("u-stranger")
ADMIN = Principal("u-admin", is_platform_admin=True)
ANON = Principal.anonymous()


@pytest.fixture
def source():
    return InMemoryRowSource({
        "libraries": [
            {"id": "lib-1", "slug": "tzolak", "owner_id": "u-owner", "is_active": True},
            {"id": "lib-2", "slug": "closed", "owner_id": "u-owner", "is_active": False},
        ],
        "library_members": [
            {"id": "m-1", "library_id": "lib-1", "user_id": "u-owner", "role": "owner"},
            {"id": "m-2", "library_id": "lib-1", "user_id": "u-mod", "role": "moderator"},
            {"id": "m-3", "library_id": "lib-1", "user_id": "u-member", "role": "member"},
        ],
        "games": [
            {"id": "g-1", "library_id": "lib-1", "title": "Azul"},
            {"id": "g-2", "library_id": "lib-2", "title": "Brass"},
        ],
        "game_admin_data": [{"id": "a-1", "game_id": "g-1", "purchase_price": 40}],
        "game_sessions": [{"id": "s-1", "game_id": "g-1"}],
        "game_session_players": [{"id": "p-1", "session_id": "s-1", "player_name": "Ana"}],
        "password_reset_tokens": [{"id": "t-1", "user_id": "u-owner", "token": "secret"}],
    })


def store(source, principal):
    return PolicyEnforcedStore(PolicyEngine(build_policy_registry(), source), principal)


def test_public_catalog_hides_inactive_libraries(source):
    assert [g["id"] for g in store(source, ANON).select("games")] == ["g-1"]
    assert {g["id"] for g in store(source, OWNER).select("games")} == {"g-1", "g-2"}
    assert {lib["id"] for lib in store(source, ANON).select("libraries")} == {"lib-1"}


def test_admin_data_is_owner_only(source):
    assert store(source, ANON).select("game_admin_data") == []
    assert store(source, MEMBER).select("game_admin_data") == []
    assert len(store(source, OWNER).select("game_admin_data")) == 1
    assert len(store(source, ADMIN).select("game_admin_data")) == 1


def test_nested_session_players_follow_library_visibility(source):
    assert len(store(source, ANON).select("game_session_players")) == 1
    source.update("libraries", "lib-1", {"is_active": False})
    assert store(source, ANON).select("game_session_players") == []
    assert len(store(source, OWNER).select("game_session_players")) == 1


def test_moderators_manage_events_members_do_not(source):
    event = {"library_id": "lib-1", "title": "Game night"}
    assert store(source, MODERATOR).insert("library_events", event)["title"] == "Game night"
    with pytest.raises(PolicyDenied):
        store(source, MEMBER).insert("library_events", event)


def test_members_can_join_active_libraries_only_as_member(source):
    assert store(source, STRANGER).insert(
        "library_members", {"library_id": "lib-1", "user_id": "u-stranger", "role": "member"}
    )
    with pytest.raises(PolicyDenied):
        store(source, STRANGER).insert(
            "library_members", {"library_id": "lib-1", "user_id": "u-stranger", "role": "moderator"}
        )
    with pytest.raises(PolicyDenied):
        store(source, STRANGER).insert(
            "library_members", {"library_id": "lib-2", "user_id": "u-stranger", "role": "member"}
        )


def test_membership_visibility(source):
    assert [m["id"] for m in store(source, MEMBER).select("library_members")] == ["m-3"]
    assert len(store(source, OWNER).select("library_members")) == 3
    assert store(source, ANON).select("library_members") == []


def test_owner_cannot_transfer_library_by_update(source):
    with pytest.raises(PolicyDenied):
        store(source, OWNER).update("libraries", {"owner_id": "u-stranger"}, id="lib-1")
    assert store(source, STRANGER).update("libraries", {"name": "Mine now"}, id="lib-1") == []


@pytest.mark.parametrize("table", SERVICE_ONLY_TABLES)
def test_service_only_tables_deny_everyone(source, table):
    for principal in (OWNER, ADMIN, ANON):
        assert store(source, principal).select(table) == []
        with pytest.raises(PolicyDenied):
            store(source, principal).insert(table, {"user_id": principal.user_id})


def test_no_rule_reads_its_own_table():
    registry = build_policy_registry()
    for table in registry.tables():
        for rule in registry.rules_for_table(table):
            assert table not in rule.reads


def test_library_members_has_no_role_based_rule():
    registry = build_policy_registry()
    for rule in registry.rules_for_table("library_members"):
        assert "library_members" not in rule.reads


def test_rendered_sql_covers_every_table():
    sql = render_policy_sql(build_policy_registry())
    for table in build_policy_registry().tables():
        assert f"ALTER TABLE public.{table} ENABLE ROW LEVEL SECURITY;" in sql
    assert 'CREATE POLICY "Deny direct access" ON public.password_reset_tokens' in sql
    assert "FOR ALL USING (false);" in sql


def test_rendered_sql_shapes():
    sql = render_policy_sql(build_policy_registry())
    assert (
        'CREATE POLICY "Admins can manage all libraries" ON public.libraries\n'
        "    FOR ALL\n"
        "    USING (public.has_role(auth.uid(), 'admin'));"
    ) in sql
    assert (
        'CREATE POLICY "Users can create their own library" ON public.libraries\n'
        "    FOR INSERT\n"
        "    WITH CHECK (owner_id = auth.uid());"
    ) in sql
    assert 'CREATE POLICY "Owners can manage their library games (insert)" ON public.games' in sql
    assert "lib0.is_active = true" in sql


def test_role_condition_renders_membership_subquery():
    sql = HasTenantRole(Direct(), ["owner", "moderator"]).to_sql()
    assert sql.startswith("EXISTS (SELECT 1 FROM public.libraries lib0 WHERE lib0.id = library_id")
    assert "lib0.owner_id = auth.uid()" in sql
    assert "m.role IN ('moderator')" in sql
    assert "library_members m" in sql
    assert RowOwner("follower_user_id").to_sql() == "follower_user_id = auth.uid()"


def test_every_scoped_table_allows_someone_to_read():
    registry = build_policy_registry()
    for table in registry.tables():
        if registry.is_service_only(table):
            continue
        assert registry.rules_for(table, Operation.SELECT), table


def test_export_script_writes_the_policy_file(tmp_path):
    target = tmp_path / "policies.sql"
    result = CliRunner().invoke(cli, ["--output", str(target)])
    assert result.exit_code == 0, result.output
    assert target.read_text() == render_policy_sql(build_policy_registry())
