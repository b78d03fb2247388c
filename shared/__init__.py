"""
Shared module for common utilities used by the chat gateway.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (pydantic-settings)
  - logging.py: Structured logging and audit helpers

- shared.infrastructure: Cross-cutting runtime plumbing
  - correlation.py: Correlation IDs carried into log records

- shared.security: Authentication
  - auth.py: JWT signing and verification

- shared.utils: Utilities
  - exceptions.py: Base exception with automatic logging

IMPORT EXAMPLES:
    from shared.config.settings import settings
    from shared.config.logging import get_logger
    from shared.security.auth import verify_jwt
    from shared.utils.exceptions import AuthError
"""
