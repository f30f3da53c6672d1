# Supabase Auth
# Identities live in Supabase's auth.users table; this module keeps no tables of its own.
# Platform admins carry app_metadata.type = "super_user" (or role = "admin"), which is
# set server-side and read by Principal.from_user_data for PlatformAdmin policy checks.

"""
Supabase Auth calls used here:
- auth.sign_in_with_password() - Authenticate users; the session's token pair is
  mirrored into the cross-subdomain cookie by the session bridge
- auth.get_user() - Get current user from JWT token
- auth.sign_out() - Logout users
"""
