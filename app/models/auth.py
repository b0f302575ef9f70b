from typing import Optional
from uuid import UUID
from sqlmodel import SQLModel


class TokenData(SQLModel):
    """Claims we rely on from the bearer token."""
    user_id: UUID
    supplier_id: Optional[UUID] = None


class Actor(SQLModel):
    """
    The authenticated caller.
    Builders carry only a user id; supplier accounts also carry the supplier they act for.
    """
    user_id: UUID
    supplier_id: Optional[UUID] = None

    @property
    def is_supplier(self) -> bool:
        return self.supplier_id is not None
