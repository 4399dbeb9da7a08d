from uuid import UUID

from pydantic import BaseModel


class BusinessVerticalDTO(BaseModel):
    id: UUID
    code: str
    name: str


class SiteDTO(BaseModel):
    id: UUID
    business_vertical_id: UUID
    code: str
    name: str
