"""
Account credentials — token cipher, resolver, refresh grants.
"""

from crosspost.accounts.cipher import TokenCipher
from crosspost.accounts.refresh import RefreshedTokens, TokenRefresher, build_refreshers
from crosspost.accounts.resolver import CredentialResolver, Credentials

__all__ = [
    "TokenCipher",
    "CredentialResolver",
    "Credentials",
    "TokenRefresher",
    "RefreshedTokens",
    "build_refreshers",
]
