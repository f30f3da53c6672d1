# Schema-per-tenant mode tables.
# core_metadata holds the shared directory (users, tenants, tenant_members).
# tenant_template holds the per-library tables; it is materialized once per tenant
# inside that tenant's schema and carries no tenant discriminator column, since the
# schema boundary is the isolation.

from functools import lru_cache

import sqlalchemy as sa

core_metadata = sa.MetaData()

users = sa.Table(
    "users",
    core_metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("email", sa.String(255), nullable=False, unique=True),
    sa.Column("password_hash", sa.String(255), nullable=False),
    sa.Column("display_name", sa.String(255)),
    sa.Column("platform_role", sa.String(20), nullable=False, server_default="user"),
    sa.Column("status", sa.String(20), nullable=False, server_default="active"),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
)

tenants = sa.Table(
    "tenants",
    core_metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("slug", sa.String(63), nullable=False, unique=True),
    sa.Column("display_name", sa.String(255), nullable=False),
    sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
    sa.Column("schema_name", sa.String(63), nullable=False, unique=True),
    sa.Column("custom_domain", sa.String(255), unique=True),
    sa.Column("status", sa.String(20), nullable=False, server_default="active"),
    sa.Column("is_discoverable", sa.Boolean, nullable=False, server_default=sa.true()),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    sa.Index("idx_tenants_owner", "owner_id"),
)

tenant_members = sa.Table(
    "tenant_members",
    core_metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("tenant_id", sa.String(36), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("role", sa.String(20), nullable=False),  # owner | moderator | member
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    sa.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_members_tenant_user"),
)


tenant_template = sa.MetaData()

sa.Table(
    "publishers",
    tenant_template,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("name", sa.String(255), nullable=False, unique=True),
    sa.Column("website_url", sa.String(500)),
)

sa.Table(
    "mechanics",
    tenant_template,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("name", sa.String(255), nullable=False, unique=True),
    sa.Column("bgg_id", sa.String(20)),
)

sa.Table(
    "games",
    tenant_template,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("title", sa.String(255), nullable=False),
    sa.Column("slug", sa.String(255)),
    sa.Column("description", sa.Text),
    sa.Column("image_url", sa.String(500)),
    sa.Column("publisher_id", sa.String(36), sa.ForeignKey("publishers.id", ondelete="SET NULL")),
    sa.Column("min_players", sa.Integer),
    sa.Column("max_players", sa.Integer),
    sa.Column("play_time", sa.String(50)),
    sa.Column("bgg_id", sa.String(20)),
    sa.Column("is_expansion", sa.Boolean, nullable=False, server_default=sa.false()),
    sa.Column("parent_game_id", sa.String(36), sa.ForeignKey("games.id", ondelete="SET NULL")),
    sa.Column("is_for_sale", sa.Boolean, nullable=False, server_default=sa.false()),
    sa.Column("sale_price", sa.Numeric(10, 2)),
    sa.Column("is_coming_soon", sa.Boolean, nullable=False, server_default=sa.false()),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    sa.Index("idx_games_title", "title"),
)

sa.Table(
    "game_mechanics",
    tenant_template,
    sa.Column("game_id", sa.String(36), sa.ForeignKey("games.id", ondelete="CASCADE"), primary_key=True),
    sa.Column("mechanic_id", sa.String(36), sa.ForeignKey("mechanics.id", ondelete="CASCADE"), primary_key=True),
)

sa.Table(
    "game_admin_data",
    tenant_template,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("game_id", sa.String(36), sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False, unique=True),
    sa.Column("purchase_price", sa.Numeric(10, 2)),
    sa.Column("purchase_date", sa.Date),
    sa.Column("notes", sa.Text),
)

sa.Table(
    "game_sessions",
    tenant_template,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("game_id", sa.String(36), sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
    sa.Column("played_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("duration_minutes", sa.Integer),
    sa.Column("notes", sa.Text),
)

sa.Table(
    "game_session_players",
    tenant_template,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("session_id", sa.String(36), sa.ForeignKey("game_sessions.id", ondelete="CASCADE"), nullable=False),
    sa.Column("player_name", sa.String(255), nullable=False),
    sa.Column("score", sa.Integer),
    sa.Column("is_winner", sa.Boolean, nullable=False, server_default=sa.false()),
)

sa.Table(
    "game_wishlist",
    tenant_template,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("game_id", sa.String(36), sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
    sa.Column("guest_identifier", sa.String(255), nullable=False),
    sa.UniqueConstraint("game_id", "guest_identifier", name="uq_wishlist_game_guest"),
)

sa.Table(
    "game_ratings",
    tenant_template,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("game_id", sa.String(36), sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
    sa.Column("guest_identifier", sa.String(255), nullable=False),
    sa.Column("rating", sa.SmallInteger, nullable=False),
    sa.UniqueConstraint("game_id", "guest_identifier", name="uq_ratings_game_guest"),
)

sa.Table(
    "game_messages",
    tenant_template,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("game_id", sa.String(36), sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False),
    sa.Column("sender_name", sa.String(255), nullable=False),
    sa.Column("sender_email", sa.String(255), nullable=False),
    sa.Column("message", sa.Text, nullable=False),
    sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
)

sa.Table(
    "settings",
    tenant_template,
    sa.Column("key_name", sa.String(100), primary_key=True),
    sa.Column("value", sa.Text),
    sa.Column("value_type", sa.String(20), nullable=False, server_default="string"),
)

sa.Table(
    "feature_flags",
    tenant_template,
    sa.Column("key_name", sa.String(100), primary_key=True),
    sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
    sa.Column("config", sa.JSON),
)


@lru_cache(maxsize=256)
def tenant_metadata(schema_name: str) -> sa.MetaData:
    """The template tables re-homed into one tenant's schema."""
    metadata = sa.MetaData()
    for table in tenant_template.sorted_tables:
        table.to_metadata(metadata, schema=schema_name)
    return metadata
