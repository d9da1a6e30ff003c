"""
Token Model - Payload of bearer tokens issued by the identity provider.
"""

from typing import Optional
from pydantic import BaseModel


class TokenData(BaseModel):
    """Token payload data."""
    user_id: Optional[str] = None
    username: Optional[str] = None
