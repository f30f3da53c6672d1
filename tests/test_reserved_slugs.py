import pytest

from app.config.settings import Settings
from app.core.exceptions import SlugValidationError
from app.modules.tenancy.reserved import (
    BUILTIN_RESERVED_SLUGS, ReservedSlugGuard, is_valid_slug, schema_name_for, validate_slug
)


def test_builtin_slugs_are_reserved():
    guard = ReservedSlugGuard()
    for slug in ("www", "api", "admin", "mail", "app", "tavern", "platform", "demo"):
        assert guard.is_reserved(slug)
    assert not guard.is_reserved("tzolak")


def test_reserved_check_is_case_insensitive():
    guard = ReservedSlugGuard()
    assert guard.is_reserved("WWW")
    assert "Admin" in guard


def test_extension_list_is_merged_with_builtins():
    settings = Settings(reserved_slugs=" Shop, forum ,,")
    guard = ReservedSlugGuard.from_settings(settings)
    assert guard.is_reserved("shop")
    assert guard.is_reserved("forum")
    assert BUILTIN_RESERVED_SLUGS <= guard.slugs


def test_reserved_set_is_immutable():
    guard = ReservedSlugGuard(["shop"])
    assert isinstance(guard.slugs, frozenset)
    with pytest.raises(AttributeError):
        guard.slugs.add("other")


@pytest.mark.parametrize("slug", ["abc", "tzolak", "board-game-club", "a1b", "x" * 63])
def test_valid_slugs(slug):
    assert is_valid_slug(slug)
    assert validate_slug(slug) == slug


@pytest.mark.parametrize("slug", ["ab", "x" * 64, "-abc", "abc-", "Abc", "a_bc", "a.bc", "", "ab c"])
def test_invalid_slugs(slug):
    assert not is_valid_slug(slug)
    with pytest.raises(SlugValidationError):
        validate_slug(slug)


def test_schema_name_is_deterministic():
    assert schema_name_for("board-game-club") == "tenant_board_game_club"
    assert schema_name_for("board-game-club") == schema_name_for("board-game-club")


def test_long_schema_names_fit_identifier_limit_and_stay_distinct():
    first = schema_name_for("a" * 62 + "b")
    second = schema_name_for("a" * 62 + "c")
    assert len(first) <= 63
    assert len(second) <= 63
    assert first != second
    assert first.startswith("tenant_")
