"""Transaction helper with a single automatic retry on write conflicts."""
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from shopbooks.config import settings
from shopbooks.core.exceptions import ConflictError


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_in_transaction(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    retries: Optional[int] = None,
    label: str = "operation",
) -> T:
    """
    Run `operation` and commit; retry after a write conflict.

    A ConflictError, a unique-constraint violation or a stale versioned
    UPDATE rolls the session back and runs `operation` again (CONFLICT_RETRIES
    times, default once). The rollback expires every loaded object, so the
    operation must re-read whatever it mutates. Any other exception rolls back
    and propagates unchanged.
    """
    if retries is None:
        retries = settings.CONFLICT_RETRIES

    attempt = 0
    while True:
        attempt += 1
        try:
            result = await operation()
            await db.commit()
            return result
        except (ConflictError, IntegrityError, StaleDataError) as exc:
            await db.rollback()
            if attempt > retries:
                if isinstance(exc, ConflictError):
                    raise
                raise ConflictError(
                    f"{label} conflicted with a concurrent write: {exc.__class__.__name__}"
                ) from exc
            logger.warning(
                "%s hit a write conflict (attempt %d): %s", label, attempt, exc
            )
        except Exception:
            await db.rollback()
            raise
