"""Pydantic schemas shared across the client core."""

from .schemas import AuthResult
from .schemas import ChatReply
from .schemas import Conversation
from .schemas import CredentialPair
from .schemas import DrainReport
from .schemas import Operation
from .schemas import Response
from .schemas import UserProfile

__all__ = [
    "AuthResult",
    "ChatReply",
    "Conversation",
    "CredentialPair",
    "DrainReport",
    "Operation",
    "Response",
    "UserProfile",
]
