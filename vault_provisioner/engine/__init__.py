"""
Policy Engine Package.

This package provides the credential cache, the collection policy
resolver and the retention policy components.
"""

from .policy_mapper import PolicyMapper
from .retention import RetentionJob, RetentionPolicy
from .session_cache import ClientCredentialsAuthenticator, SessionCache

__all__ = [
    "PolicyMapper",
    "SessionCache",
    "ClientCredentialsAuthenticator",
    "RetentionPolicy",
    "RetentionJob",
]
