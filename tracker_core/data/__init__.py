# =============================================================================
# tracker_core/data/__init__.py
# Cloud Data Access
# =============================================================================

from .supabase_client import create_supabase_client, cleanup_supabase_client

__all__ = ["create_supabase_client", "cleanup_supabase_client"]
