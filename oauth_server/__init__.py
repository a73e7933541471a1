"""
Internal OAuth2 authorization server.

Lets the assistant obtain a durable bearer credential for one of its
end-users through the authorization-code grant, with this service as
the provider.

Modules:
  • grants.py — authorize step, code exchange and refresh-token grant
"""
