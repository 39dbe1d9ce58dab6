from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class LenderType(str, Enum):
    CAPITAL_BOX = "capital_box"
    QRED = "qred"


class LenderDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    type: str
    is_active: bool
    funding_categories: list[str]
    priority: int
