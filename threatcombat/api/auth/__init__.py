"""Authentication module."""

from threatcombat.api.auth.jwt import create_access_token, verify_token
from threatcombat.api.auth.passwords import hash_password, verify_password

__all__ = ["create_access_token", "verify_token", "hash_password", "verify_password"]
