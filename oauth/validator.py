"""Access token validation against the record store."""

import logging
import time
from typing import Callable, Optional

from oauth.stores import RecordStore

logger = logging.getLogger(__name__)


def system_clock() -> int:
    return int(time.time())


class AccessValidator:
    """Decide whether a bearer value is a live access token.

    Every call hits the store; validity is never cached across requests.
    Store failures propagate as ``StoreError``.
    """

    def __init__(self, store: RecordStore, clock: Optional[Callable[[], int]] = None):
        self.store = store
        self.clock = clock or system_clock

    async def validate(self, token: str) -> bool:
        if not token:
            return False

        record = await self.store.get_token_by_access(token)
        if record is None:
            logger.debug("[AUTH] Unknown access token")
            return False

        if self.clock() > record.access_expires_at:
            logger.debug(f"[AUTH] Access token expired for client {record.client_id}")
            return False

        return True
