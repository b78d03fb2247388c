"""
Security module: token signing and verification.
"""

from shared.security.auth import sign_jwt, verify_jwt, identity_from_claims

__all__ = ["sign_jwt", "verify_jwt", "identity_from_claims"]
