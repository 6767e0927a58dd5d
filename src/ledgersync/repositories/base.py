"""Base repository shared by the model repositories."""
from typing import Generic, Type, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from ledgersync.models.base import BaseModel

T = TypeVar("T", bound=BaseModel)


class BaseRepository(Generic[T]):
    """Binds a session to the model a repository queries."""

    def __init__(self, db: AsyncSession, model: Type[T]):
        self.db = db
        self.model = model
