"""FastAPI dependency injection — DB-bound index and account validation."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from b2shelf.config import Account
from b2shelf.database import get_db
from b2shelf.services import get_object_gateway
from b2shelf.services.metadata_index import MetadataIndex
from b2shelf.services.object_gateway import ObjectGateway


async def get_metadata_index(db: AsyncSession = Depends(get_db)) -> MetadataIndex:
    return MetadataIndex(db)


def resolve_account(
    account: str,
    gateway: ObjectGateway = Depends(get_object_gateway),
) -> Account:
    """Path-parameter account -> Account, 400 if it is not configured."""
    return gateway.account(account)
