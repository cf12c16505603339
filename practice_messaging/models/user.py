"""
User Model for JWT Authentication

Represents the caller (staff user or portal client) extracted from a Supabase JWT
"""
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime, timezone


class User(BaseModel):
    """
    Caller populated from JWT token claims.

    Portal clients authenticate through the same identity provider as staff;
    they are told apart by `app_metadata.user_type == "client"`.
    """

    user_id: str = Field(..., description="Unique identifier (sub claim from JWT)")
    email: str = Field(..., description="Email address")
    display_name: str = Field("", description="Display name")

    aud: Optional[str] = Field(None, description="Audience claim - typically 'authenticated'")
    role: Optional[str] = Field(None, description="Role from JWT")
    law_firm_id: Optional[str] = Field(None, description="Tenant the caller belongs to")

    exp: Optional[int] = Field(None, description="Token expiration timestamp")
    iat: Optional[int] = Field(None, description="Token issued at timestamp")

    user_metadata: Dict[str, Any] = Field(default_factory=dict)
    app_metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "user_id": "a1b2c3d4-e5f6-7890-abcd-ef1234567890",
                "email": "advogada@escritorio.com.br",
                "display_name": "Dra. Ana Lima",
                "aud": "authenticated",
                "role": "authenticated",
                "law_firm_id": "f1b2c3d4-e5f6-7890-abcd-ef1234567890",
                "app_metadata": {"user_type": "lawyer"}
            }
        }

    @property
    def user_type(self) -> str:
        return self.app_metadata.get("user_type", "staff")

    @property
    def is_client(self) -> bool:
        return self.user_type == "client"

    @property
    def is_token_expired(self) -> bool:
        """Check if the token is expired"""
        if not self.exp:
            return True
        return datetime.now(timezone.utc).timestamp() > self.exp
