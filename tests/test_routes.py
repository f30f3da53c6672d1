from tests.fakes import OWNER_ID, bearer

TZOLAK = {"host": "tzolak.gametaverns.com"}


def with_host(headers: dict, host: str = "tzolak.gametaverns.com") -> dict:
    return {**headers, "host": host}


def test_health_answers_during_directory_outage(client, supabase):
    supabase.fail("libraries", "select", ConnectionError("down"))
    response = client.get("/health", headers=TZOLAK)
    assert response.status_code == 200
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_directory_outage_is_503_not_404(client, supabase):
    supabase.fail("libraries", "select", ConnectionError("down"))
    response = client.get("/api/v1/tenant", headers=TZOLAK)
    assert response.status_code == 503


def test_tenant_from_host_header(client):
    response = client.get("/api/v1/tenant", headers=TZOLAK)
    assert response.status_code == 200
    assert response.json()["id"] == "lib-tzolak"

    custom = client.get("/api/v1/tenant", headers={"host": "games.example.org"})
    assert custom.json()["slug"] == "gamesclub"


def test_platform_and_reserved_hosts_have_no_tenant(client):
    for host in ("gametaverns.com", "www.gametaverns.com", "closed.gametaverns.com", "localhost:8000"):
        response = client.get("/api/v1/tenant", headers={"host": host})
        assert response.status_code == 404
        assert response.json() == {"detail": "Not found"}


def test_root_greets_the_library(client):
    assert client.get("/", headers=TZOLAK).json()["library"] == "tzolak"
    assert "library" not in client.get("/").json()


def test_check_slug(client):
    def reason(slug):
        return client.get(f"/api/v1/platform/check-slug/{slug}").json()

    assert reason("newclub") == {"slug": "newclub", "available": True, "reason": None}
    assert reason("tzolak")["reason"] == "taken"
    assert reason("closed")["reason"] == "taken"
    assert reason("www")["reason"] == "reserved"
    assert reason("ab")["reason"] == "invalid_format"


def test_create_library(client, supabase):
    response = client.post(
        "/api/v1/platform/libraries",
        json={"slug": "NewClub", "name": " New Club "},
        headers=bearer("tok-stranger"),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["slug"] == "newclub"
    assert body["url"] == "https://newclub.gametaverns.com/login"

    [library] = supabase.rows("libraries", slug="newclub")
    assert (library["name"], library["owner_id"]) == ("New Club", "u-stranger")
    assert supabase.rows("library_members", library_id=library["id"])[0]["role"] == "owner"

    resolved = client.get("/api/v1/tenant", headers={"host": "newclub.gametaverns.com"})
    assert resolved.json()["id"] == library["id"]


def test_create_library_rejections(client, supabase):
    def create(slug):
        return client.post(
            "/api/v1/platform/libraries",
            json={"slug": slug, "name": "Club"},
            headers=bearer("tok-stranger"),
        )

    taken = create("tzolak")
    assert taken.status_code == 409
    assert taken.json()["reason"] == "taken"

    reserved = create("admin")
    assert reserved.status_code == 409
    assert reserved.json()["reason"] == "reserved"

    assert create("ab").status_code == 422
    assert create("-club").status_code == 422
    assert supabase.rows("library_members", user_id="u-stranger") == []


def test_create_library_membership_failure_is_500_naming_the_step(client, supabase):
    supabase.fail("library_members", "insert", RuntimeError("connection lost"))
    response = client.post(
        "/api/v1/platform/libraries",
        json={"slug": "newclub", "name": "Club"},
        headers=bearer("tok-stranger"),
    )
    assert response.status_code == 500
    assert response.json()["step"] == "membership"
    assert supabase.rows("libraries", slug="newclub") == []


def test_create_library_is_platform_only(client):
    response = client.post(
        "/api/v1/platform/libraries",
        json={"slug": "newclub", "name": "Club"},
        headers=with_host(bearer("tok-stranger")),
    )
    assert response.status_code == 404


def test_get_library_hides_inactive_from_strangers(client):
    assert client.get("/api/v1/libraries/lib-closed", headers=bearer("tok-owner")).status_code == 200
    hidden = client.get("/api/v1/libraries/lib-closed", headers=bearer("tok-stranger"))
    missing = client.get("/api/v1/libraries/lib-nope", headers=bearer("tok-stranger"))
    assert hidden.status_code == missing.status_code == 404
    assert hidden.json() == missing.json() == {"detail": "Not found"}


def test_anonymous_callers_see_active_libraries_only(client):
    assert client.get("/api/v1/libraries/lib-tzolak").json()["slug"] == "tzolak"
    assert client.get("/api/v1/libraries/lib-closed").status_code == 404


def test_owner_updates_library(client, supabase):
    response = client.patch(
        "/api/v1/libraries/lib-tzolak",
        json={"name": "Tzolak Board Game Tavern", "custom_domain": "Boardgames.Example.net", "is_discoverable": False},
        headers=bearer("tok-owner"),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Tzolak Board Game Tavern"
    assert body["custom_domain"] == "boardgames.example.net"
    assert body["is_discoverable"] is False

    resolved = client.get("/api/v1/tenant", headers={"host": "boardgames.example.net"})
    assert resolved.json()["id"] == "lib-tzolak"


def test_update_is_indistinguishable_from_missing_for_non_owners(client, supabase):
    for token in ("tok-stranger", "tok-member"):
        response = client.patch("/api/v1/libraries/lib-tzolak", json={"name": "Mine"}, headers=bearer(token))
        assert response.status_code == 404
        assert response.json() == {"detail": "Not found"}
    assert supabase.rows("libraries", id="lib-tzolak")[0]["name"] == "Tzolak Tavern"


def test_admin_can_deactivate_any_library(client, supabase):
    response = client.patch("/api/v1/libraries/lib-games", json={"is_active": False}, headers=bearer("tok-admin"))
    assert response.status_code == 200
    assert client.get("/api/v1/tenant", headers={"host": "gamesclub.gametaverns.com"}).status_code == 404


def test_custom_domain_and_slug_rules(client):
    def patch(payload):
        return client.patch("/api/v1/libraries/lib-tzolak", json=payload, headers=bearer("tok-owner"))

    assert patch({"custom_domain": "games.example.org"}).status_code == 409
    assert patch({"custom_domain": "shop.gametaverns.com"}).status_code == 422
    assert patch({"custom_domain": "localhost"}).status_code == 422
    assert patch({"custom_domain": "not a domain"}).status_code == 422
    assert patch({"slug": "www"}).status_code == 409
    assert patch({"slug": "gamesclub"}).status_code == 409
    assert patch({"slug": "Bad_Slug"}).status_code == 422

    renamed = patch({"slug": "tzolak-tavern"})
    assert renamed.status_code == 200
    assert renamed.json()["slug"] == "tzolak-tavern"


def test_rename_normalizes_slug_like_create(client):
    def patch(payload):
        return client.patch("/api/v1/libraries/lib-tzolak", json=payload, headers=bearer("tok-owner"))

    unchanged = patch({"slug": " Tzolak "})
    assert unchanged.status_code == 200
    assert unchanged.json()["slug"] == "tzolak"

    renamed = patch({"slug": "Tzolak-Tavern"})
    assert renamed.status_code == 200
    assert renamed.json()["slug"] == "tzolak-tavern"
    assert patch({"slug": "GamesClub"}).status_code == 409


def test_join_and_leave(client, supabase):
    joined = client.post("/api/v1/libraries/lib-tzolak/members", headers=bearer("tok-stranger"))
    assert joined.status_code == 201
    assert joined.json()["role"] == "member"

    again = client.post("/api/v1/libraries/lib-tzolak/members", headers=bearer("tok-stranger"))
    assert again.json()["id"] == joined.json()["id"]
    assert len(supabase.rows("library_members", user_id="u-stranger")) == 1

    left = client.delete("/api/v1/libraries/lib-tzolak/members/me", headers=bearer("tok-stranger"))
    assert left.status_code == 204
    assert supabase.rows("library_members", user_id="u-stranger") == []


def test_cannot_join_inactive_library(client):
    response = client.post("/api/v1/libraries/lib-closed/members", headers=bearer("tok-stranger"))
    assert response.status_code == 404


def test_owner_cannot_leave(client):
    response = client.delete("/api/v1/libraries/lib-tzolak/members/me", headers=bearer("tok-owner"))
    assert response.status_code == 400


def test_owner_promotes_member(client, supabase):
    response = client.put(
        "/api/v1/libraries/lib-tzolak/members/u-member/role",
        json={"role": "moderator"},
        headers=bearer("tok-owner"),
    )
    assert response.status_code == 200
    assert supabase.rows("library_members", id="m-member")[0]["role"] == "moderator"


def test_role_changes_need_the_owner(client, supabase):
    url = "/api/v1/libraries/lib-tzolak/members/u-member/role"
    assert client.put(url, json={"role": "moderator"}, headers=bearer("tok-member")).status_code == 404
    assert client.put(url, json={"role": "moderator"}, headers=bearer("tok-stranger")).status_code == 404
    assert client.put(url, json={"role": "owner"}, headers=bearer("tok-owner")).status_code == 422
    owner_url = f"/api/v1/libraries/lib-tzolak/members/{OWNER_ID}/role"
    assert client.put(owner_url, json={"role": "member"}, headers=bearer("tok-owner")).status_code == 400
    assert supabase.rows("library_members", id="m-member")[0]["role"] == "member"


def test_login_without_bridge_in_development(client):
    response = client.post(
        "/api/v1/auth/login",
        json={"email": "owner@example.com", "password": "owner-pass"},
        headers=TZOLAK,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["access_token"] == "tok-owner"
    assert body["refresh_token"] == "refresh-1"
    assert "set-cookie" not in response.headers


def test_wrong_password_is_401(client):
    response = client.post("/api/v1/auth/login", json={"email": "owner@example.com", "password": "nope"})
    assert response.status_code == 401


def test_me_reports_library_ownership(client):
    mine = client.get("/api/v1/auth/me", headers=with_host(bearer("tok-owner")))
    assert mine.json()["is_library_owner"] is True
    assert mine.json()["is_platform_admin"] is False

    admin = client.get("/api/v1/auth/me", headers=with_host(bearer("tok-admin")))
    assert admin.json()["is_library_owner"] is False
    assert admin.json()["is_platform_admin"] is True


def test_invalid_token_is_401(client):
    assert client.get("/api/v1/auth/me", headers=bearer("tok-forged")).status_code == 401


def test_registration_is_left_to_supabase_auth(client):
    response = client.post(
        "/api/v1/auth/register",
        json={"email": "new@example.com", "password": "s3cret-pass"},
    )
    assert response.status_code == 404
