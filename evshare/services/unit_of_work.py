from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from evshare.services.exceptions import ConcurrentModificationError, DatabaseQueryError


@asynccontextmanager
async def unit_of_work(db: AsyncSession):
    """
    Commits everything done inside the block, or nothing.

    Works whether or not the session has already autobegun a transaction.
    Row locks taken inside the block are held until the commit/rollback.
    A lost optimistic version check becomes ConcurrentModificationError so
    callers decorated with async_retry replay the operation.
    """
    try:
        yield db
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        raise ConcurrentModificationError(str(e)) from e
    except SQLAlchemyError as e:
        await db.rollback()
        raise DatabaseQueryError(str(e)) from e
    except BaseException:
        await db.rollback()
        raise
