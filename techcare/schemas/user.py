from pydantic import BaseModel
from enum import Enum


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    TECHNICIAN = "TECHNICIAN"
    ADMIN = "ADMIN"


class Principal(BaseModel):
    """Authenticated actor handed over by the auth collaborator."""
    id: str
    role: Role
