"""
Isolation Policy Configuration
Row-level access rules for every tenant-scoped and user-scoped table.
Used by the policy engine at request time and by export_rls_policies to emit
the equivalent Postgres RLS statements.
"""

from functools import lru_cache

from app.core.policy_engine import (
    Always,
    ColumnIn,
    Direct,
    HasTenantRole,
    PlatformAdmin,
    PolicyRegistry,
    RowIsTenant,
    RowOwner,
    TenantActive,
    TenantOwner,
    Via,
)

LIBRARY = Direct("library_id")
GAME = Via("game_id", "games", LIBRARY)
SESSION = Via("session_id", "game_sessions", GAME)

TENANT_ROLES = ["owner", "moderator", "member"]
EVENT_MANAGER_ROLES = ["owner", "moderator"]

# Tables only trusted backend code may touch
SERVICE_ONLY_TABLES = [
    "password_reset_tokens",
    "email_confirmation_tokens",
]


def _library_policies(registry: PolicyRegistry) -> None:
    registry.allow("Active libraries are viewable by everyone", "libraries", "select",
                   TenantActive(RowIsTenant()))
    registry.allow("Owners can view their own libraries", "libraries", "select",
                   RowOwner("owner_id"))
    registry.allow("Users can create their own library", "libraries", "insert",
                   using=RowOwner("owner_id"))
    registry.allow("Owners can update their library", "libraries", "update",
                   using=RowOwner("owner_id"), check=RowOwner("owner_id"))
    registry.allow("Owners can delete their library", "libraries", "delete",
                   RowOwner("owner_id"))
    registry.allow("Admins can manage all libraries", "libraries", "all", PlatformAdmin())

    registry.allow("Library settings follow library visibility", "library_settings", "select",
                   TenantActive(LIBRARY) | TenantOwner(LIBRARY))
    registry.allow("Owners can manage their library settings", "library_settings",
                   ["insert", "update", "delete"], TenantOwner(LIBRARY))
    registry.allow("Admins can manage all library settings", "library_settings", "all",
                   PlatformAdmin())


def _game_policies(registry: PolicyRegistry) -> None:
    registry.allow("Games in active libraries are viewable by everyone", "games", "select",
                   TenantActive(LIBRARY))
    registry.allow("Owners can view their library games", "games", "select", TenantOwner(LIBRARY))
    registry.allow("Owners can manage their library games", "games",
                   ["insert", "update", "delete"], TenantOwner(LIBRARY))
    registry.allow("Admins can manage all games", "games", "all", PlatformAdmin())

    # Purchase prices and locations: owner-only, never public
    registry.allow("Owners can manage their game admin data", "game_admin_data", "all",
                   TenantOwner(GAME))
    registry.allow("Admins can manage all game admin data", "game_admin_data", "all",
                   PlatformAdmin())

    registry.allow("Sessions in active libraries are viewable by everyone", "game_sessions", "select",
                   TenantActive(GAME) | TenantOwner(GAME))
    registry.allow("Owners can manage their game sessions", "game_sessions",
                   ["insert", "update", "delete"], TenantOwner(GAME))

    registry.allow("Session players follow session visibility", "game_session_players", "select",
                   TenantActive(SESSION) | TenantOwner(SESSION))
    registry.allow("Owners can manage session players", "game_session_players",
                   ["insert", "update", "delete"], TenantOwner(SESSION))


def _community_policies(registry: PolicyRegistry) -> None:
    registry.allow("Borrowers and owners can view loans", "game_loans", "select",
                   RowOwner("borrower_user_id") | TenantOwner(LIBRARY))
    registry.allow("Users can request loans from active libraries", "game_loans", "insert",
                   using=RowOwner("borrower_user_id") & TenantActive(LIBRARY))
    registry.allow("Borrowers and owners can update loans", "game_loans", "update",
                   RowOwner("borrower_user_id") | TenantOwner(LIBRARY))
    registry.allow("Owners can delete loans", "game_loans", "delete", TenantOwner(LIBRARY))

    registry.allow("Events in active libraries are viewable by everyone", "library_events", "select",
                   TenantActive(LIBRARY))
    registry.allow("Owners and moderators can manage events", "library_events",
                   ["insert", "update", "delete"], HasTenantRole(LIBRARY, EVENT_MANAGER_ROLES))
    registry.allow("Admins can manage all events", "library_events", "all", PlatformAdmin())

    # Members are never resolved through library_members itself
    registry.allow("Users can view their own memberships", "library_members", "select",
                   RowOwner())
    registry.allow("Owners can view their library members", "library_members", "select",
                   TenantOwner(LIBRARY))
    registry.allow("Users can join active libraries", "library_members", "insert",
                   using=RowOwner() & TenantActive(LIBRARY) & ColumnIn("role", ["member"]))
    registry.allow("Owners can add library members", "library_members", "insert",
                   using=TenantOwner(LIBRARY))
    registry.allow("Owners can change member roles", "library_members", "update",
                   TenantOwner(LIBRARY))
    registry.allow("Users can leave libraries", "library_members", "delete", RowOwner())
    registry.allow("Owners can remove library members", "library_members", "delete",
                   TenantOwner(LIBRARY))
    registry.allow("Admins can manage all memberships", "library_members", "all", PlatformAdmin())

    registry.allow("Followers are viewable by everyone", "library_followers", "select", Always())
    registry.allow("Users can follow active libraries", "library_followers", "insert",
                   using=RowOwner("follower_user_id") & TenantActive(LIBRARY))
    registry.allow("Users can unfollow libraries", "library_followers", "delete",
                   RowOwner("follower_user_id"))


def _user_policies(registry: PolicyRegistry) -> None:
    registry.allow("Profiles are viewable by everyone", "user_profiles", "select", Always())
    registry.allow("Users can manage their own profile", "user_profiles",
                   ["insert", "update"], RowOwner())

    registry.allow("Users can view their own roles", "user_roles", "select", RowOwner())
    registry.allow("Admins can manage roles", "user_roles", "all", PlatformAdmin())

    registry.allow("Users can manage their notification preferences", "notification_preferences",
                   "all", RowOwner())
    registry.allow("Users can view their notifications", "notification_log", "select", RowOwner())
    registry.allow("Users can mark their notifications read", "notification_log", "update",
                   RowOwner())
    registry.allow("Admins can manage notifications", "notification_log", "all", PlatformAdmin())


def _platform_policies(registry: PolicyRegistry) -> None:
    registry.allow("Achievements are viewable by everyone", "achievements", "select", Always())
    registry.allow("Admins can manage achievements", "achievements", "all", PlatformAdmin())

    registry.allow("Earned achievements are viewable by everyone", "user_achievements", "select",
                   Always())
    registry.allow("Admins can award achievements", "user_achievements", ["insert", "delete"],
                   PlatformAdmin())

    registry.allow("Site settings are viewable by everyone", "site_settings", "select", Always())
    registry.allow("Admins can manage site settings", "site_settings", "all", PlatformAdmin())

    registry.allow("Anyone can submit feedback", "platform_feedback", "insert", Always())
    registry.allow("Admins can manage feedback", "platform_feedback", "all", PlatformAdmin())

    for table in SERVICE_ONLY_TABLES:
        registry.service_only(table)


def register_policies(registry: PolicyRegistry) -> PolicyRegistry:
    _library_policies(registry)
    _game_policies(registry)
    _community_policies(registry)
    _user_policies(registry)
    _platform_policies(registry)
    return registry


@lru_cache()
def build_policy_registry() -> PolicyRegistry:
    return register_policies(PolicyRegistry())
