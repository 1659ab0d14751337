"""Authorization collaborator."""

from auth.authorizer import Authorizer, hash_token, parse_bearer

__all__ = ["Authorizer", "hash_token", "parse_bearer"]
