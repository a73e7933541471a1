"""
connectors — OAuth integrations with external services.

Provides a generic connector framework that handles:
  • OAuth2 auth-URL generation and code → token exchange
  • Access-token refresh and best-effort revocation
  • Onboarding links, management links and account ownership checks
  • Fernet encryption of tokens at rest

Each provider (Gmail, Slack, Linear, Zoho) is a subclass of BaseConnector.
"""
