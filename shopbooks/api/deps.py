from typing import Annotated, Optional
import logging

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from shopbooks.database import get_db


logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


async def get_current_actor(
    x_actor_id: Annotated[Optional[str], Header(max_length=100)] = None,
) -> str:
    """
    Actor recorded on every write (created_by, payment history, conversions).

    Authentication lives in front of this service; it forwards the caller as
    X-Actor-Id. Requests without one are attributed to "system".
    """
    actor = (x_actor_id or "").strip()
    return actor or SYSTEM_ACTOR


# Type aliases for cleaner endpoint signatures
DB = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[str, Depends(get_current_actor)]
