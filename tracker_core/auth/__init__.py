# =============================================================================
# tracker_core/auth/__init__.py
# Authentication Sources
# =============================================================================

from .provider import AuthProvider, StaticAuthProvider, SupabaseAuthProvider

__all__ = ["AuthProvider", "StaticAuthProvider", "SupabaseAuthProvider"]
