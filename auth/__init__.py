"""
auth — caller authentication and internal token primitives.

Provides:
  • Secure token generation and expiry helpers
  • HS256 access tokens for the internal OAuth server
  • ``get_current_user_id`` FastAPI dependency (Bearer or legacy headers)
"""
