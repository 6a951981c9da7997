from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

STAFF_ROLES = frozenset({"admin", "seller", "service_role"})


class AuthUser(BaseModel):
    """
    Claims of a verified bearer token. Tokens are issued by the auth service.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "customer"

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
