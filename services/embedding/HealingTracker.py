"""Failure bookkeeping for items that could not be embedded.

Noise is excluded permanently. NaN failures get another attempt once their
cooldown has passed, until the retry limit is reached. Once an item has a
successful record, its failure record is removed by do_cleanup_healed().
"""

from datetime import datetime, timedelta

import pytz

from shared.clients.db.DBClientInterface import DBClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.conversation import EmbeddingRecord, FailureReason


def is_healable(record: EmbeddingRecord, retry_limit: int, cooldown_days: int, now: datetime | None = None) -> bool:
    """Whether a failure record may be attempted again.

    Mirrors the candidate filter of the relational store: nan failures below
    the retry limit whose last attempt is strictly older than the cooldown.
    """
    if record.failure_reason != FailureReason.NAN:
        return False
    if record.retry_count >= retry_limit:
        return False
    if record.updated_at is None:
        return False
    now = now or datetime.now(pytz.utc)
    return now - record.updated_at > timedelta(days=cooldown_days)


class HealingTracker:
    def __init__(self, helper_config: HelperConfig, db_client: DBClientInterface) -> None:
        self.logging = helper_config.get_logger()
        self._db_client = db_client
        self.retry_limit = helper_config.get_int_val("HEALING_RETRY_LIMIT", default=3)
        self.cooldown_days = helper_config.get_int_val("HEALING_COOLDOWN_DAYS", default=7)

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def is_eligible(self, record: EmbeddingRecord, now: datetime | None = None) -> bool:
        """Whether a failed item may be attempted again.

        Args:
            record (EmbeddingRecord): The failure record.
            now (datetime | None): Reference time, defaults to the current UTC time.

        Returns:
            bool: True for nan failures below the retry limit whose cooldown has passed.
        """
        return is_healable(record, self.retry_limit, self.cooldown_days, now=now)

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_mark_noise(self, item_id: int, detail: str) -> None:
        """Record a permanent noise exclusion. The retry count is left untouched."""
        await self._db_client.do_upsert_failure(item_id, FailureReason.NOISE, detail)

    async def do_mark_nan(self, item_id: int, detail: str) -> None:
        """Record a non-finite failure, incrementing the retry count and restarting the cooldown."""
        await self._db_client.do_upsert_failure(item_id, FailureReason.NAN, detail)

    async def do_count_healable(self) -> int:
        """Number of nan failures currently eligible for another attempt."""
        return await self._db_client.do_count_healable(self.retry_limit, self.cooldown_days)

    async def do_cleanup_healed(self, collection: str) -> int:
        """Delete failure records of items that now have a successful record in the collection.

        Returns:
            int: The number of removed failure records.
        """
        cleaned = await self._db_client.do_cleanup_healed(collection)
        if cleaned:
            self.logging.info("Cleaned %d healed failure records", cleaned)
        return cleaned
