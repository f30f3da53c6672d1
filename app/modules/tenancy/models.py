# Shared-schema tenancy tables (Supabase)
# These tables are created via Supabase migrations; RLS policies for them are
# generated from app/config/isolation_policies.py by app/scripts/export_rls_policies.py.

"""
Table: libraries
- id: UUID (Primary Key)
- slug: VARCHAR(63) (Unique, DNS label; subdomain {slug}.{ROOT_DOMAIN})
- name: VARCHAR(255) (Not Null)
- owner_id: UUID (Foreign Key to auth.users)
- custom_domain: VARCHAR(255) (Unique, Nullable)
- is_active: BOOLEAN (Default: true; inactive libraries never resolve)
- is_discoverable: BOOLEAN (Default: true; listed in the public directory)
- created_at: TIMESTAMP WITH TIME ZONE
- updated_at: TIMESTAMP WITH TIME ZONE

Table: library_members
- id: UUID (Primary Key)
- library_id: UUID (Foreign Key to libraries)
- user_id: UUID (Foreign Key to auth.users)
- role: VARCHAR(20) ('owner', 'moderator', 'member')
- created_at: TIMESTAMP WITH TIME ZONE
- Unique constraint on (library_id, user_id)

Table: library_settings
- id: UUID (Primary Key)
- library_id: UUID (Foreign Key to libraries, Unique)
- theme, branding and feature toggles (opaque to tenancy)

Tenant-scoped content tables carry library_id directly (games, game_loans,
library_events, library_followers) or reach it through a parent row
(game_admin_data, game_sessions -> games; game_session_players -> game_sessions).

Service-only tables (password_reset_tokens, email_confirmation_tokens) have RLS
enabled with a deny-all policy and are written only with the service-role key.
"""
