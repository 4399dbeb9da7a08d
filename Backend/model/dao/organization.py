from typing import Self
from uuid import UUID

from sqlalchemy import ScalarResult
from sqlmodel import Field, select

from core.database import SQLDatabase
from model.dao.base import TimestampDAO, UuidDAO
from model.dto.organization import BusinessVerticalDTO, SiteDTO


class BusinessVerticalDAO(UuidDAO, TimestampDAO, table=True):
    # model config
    __tablename__ = "business_verticals"
    __dto_class__ = BusinessVerticalDTO

    code: str = Field(nullable=False, unique=True, max_length=50)
    name: str

    @classmethod
    async def filter(
        cls,
        *,
        db_resource: SQLDatabase,
        id: UUID | None = None,
        code: str | None = None,
    ) -> ScalarResult[Self]:
        """Filter business verticals by id and code."""
        async with db_resource.session() as session:
            query = select(BusinessVerticalDAO)
            if id is not None:
                query = query.where(BusinessVerticalDAO.id == id)
            if code is not None:
                query = query.where(BusinessVerticalDAO.code == code)
            return await session.scalars(query)


class SiteDAO(UuidDAO, TimestampDAO, table=True):
    # model config
    __tablename__ = "sites"
    __dto_class__ = SiteDTO

    business_vertical_id: UUID = Field(
        foreign_key="business_verticals.id", ondelete="CASCADE"
    )
    code: str = Field(nullable=False, max_length=50)
    name: str

    @classmethod
    async def filter(
        cls,
        *,
        db_resource: SQLDatabase,
        id: UUID | None = None,
        business_vertical_id: UUID | None = None,
        code: str | None = None,
    ) -> ScalarResult[Self]:
        """Filter sites by id, business vertical and code."""
        async with db_resource.session() as session:
            query = select(SiteDAO)
            if id is not None:
                query = query.where(SiteDAO.id == id)
            if business_vertical_id is not None:
                query = query.where(SiteDAO.business_vertical_id == business_vertical_id)
            if code is not None:
                query = query.where(SiteDAO.code == code)
            return await session.scalars(query)
