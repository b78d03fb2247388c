"""
Authentication components.
"""

from chat_gateway.components.auth.strategies import (
    AuthResult,
    AuthStrategy,
    JWTAuthStrategy,
    OriginValidationMixin,
)

__all__ = [
    "AuthResult",
    "AuthStrategy",
    "JWTAuthStrategy",
    "OriginValidationMixin",
]
