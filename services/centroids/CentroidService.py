"""Centroid aggregation.

A centroid is the unit-normalized mean of the message vectors of a session
or project. Vectors are streamed page by page so memory stays bounded by the
page size regardless of the scope size.
"""

import asyncio
from datetime import datetime

import numpy as np
import pytz

from shared.clients.db.DBClientInterface import DBClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.helper import HelperVector
from shared.helper.HelperConfig import HelperConfig
from shared.models.conversation import Centroid, CentroidScope, ScopeKind
from shared.models.stats import CentroidRunStats


class CentroidService:
    def __init__(
        self,
        helper_config: HelperConfig,
        db_client: DBClientInterface,
        rag_client: RAGClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._db_client = db_client
        self._rag_client = rag_client
        self.dimensions = helper_config.get_int_val("EMBED_DIMENSIONS", default=1024)
        self.page_size = helper_config.get_int_val("CENTROID_PAGE_SIZE", default=100)
        self.concurrency = helper_config.get_int_val("CENTROID_CONCURRENCY", default=4)

    ##########################################
    ############### COMPUTE ##################
    ##########################################

    async def do_compute_centroid(self, scope: CentroidScope) -> Centroid | None:
        """Compute the centroid of a session or project.

        Only message-level vectors count. Vectors with the wrong dimension or
        non-finite components are skipped.

        Args:
            scope (CentroidScope): The session or project.

        Returns:
            Centroid | None: The centroid, or None if no usable vector exists
                or the mean is the zero vector.
        """
        collection = self._rag_client.collection_messages
        total = await self._db_client.do_count_scope_vectors(scope, collection)
        if total == 0:
            return None

        accumulator = np.zeros(self.dimensions, dtype=np.float64)
        summed = 0
        seen = 0
        last_id = 0
        while seen < total:
            page = await self._db_client.do_fetch_scope_vector_page(scope, collection, last_id, self.page_size)
            if not page:
                break
            seen += len(page)
            last_id = page[-1].message_id

            points = await self._rag_client.do_get_points(
                collection, [ref.vector_key for ref in page], with_vector=True, with_payload=False
            )
            for point in points:
                if point.vector is None:
                    continue
                vector = HelperVector.to_array(point.vector)
                if vector.shape[0] != self.dimensions or not HelperVector.is_finite(vector):
                    continue
                accumulator += vector
                summed += 1

        if summed == 0:
            return None
        if summed < total:
            self.logging.info("Centroid %s: used %d of %d vectors", scope, summed, total)

        mean = accumulator / summed
        if HelperVector.is_zero(mean):
            return None
        return Centroid(
            scope=scope,
            vector=HelperVector.normalize(mean).tolist(),
            vector_count=summed,
            computed_at=datetime.now(pytz.utc),
        )

    async def do_update_centroid(self, scope: CentroidScope) -> Centroid | None:
        """Compute a centroid and store it on its session or project row.

        Returns:
            Centroid | None: The stored centroid, None if nothing was stored.
        """
        centroid = await self.do_compute_centroid(scope)
        if centroid is None:
            return None
        await self._db_client.do_store_centroid(centroid)
        return centroid

    ##########################################
    ################# BULK ###################
    ##########################################

    async def do_compute_all(self, kind: ScopeKind) -> CentroidRunStats:
        """Compute and store centroids of every session or project that has message vectors.

        Args:
            kind (ScopeKind): Sessions or projects.

        Returns:
            CentroidRunStats: Computed, skipped (no usable vectors) and failed counts.
        """
        scope_ids = await self._db_client.do_list_scopes(kind, self._rag_client.collection_messages)
        self.logging.info("Computing %s centroids for %d scopes...", kind.value, len(scope_ids))

        sem = asyncio.Semaphore(self.concurrency)
        scopes = [CentroidScope(kind=kind, id=scope_id) for scope_id in scope_ids]
        results = await asyncio.gather(
            *[self._update_bounded(scope, sem) for scope in scopes],
            return_exceptions=True,
        )

        stats = CentroidRunStats()
        for scope, result in zip(scopes, results):
            if isinstance(result, Exception):
                stats.failed += 1
                self.logging.error("Failed to compute centroid %s: %s", scope, result)
            elif result is None:
                stats.skipped += 1
            else:
                stats.computed += 1
        self.logging.info(
            "%s centroids: %d computed, %d skipped, %d failed",
            kind.value.capitalize(), stats.computed, stats.skipped, stats.failed,
        )
        return stats

    async def _update_bounded(self, scope: CentroidScope, sem: asyncio.Semaphore) -> Centroid | None:
        async with sem:
            return await self.do_update_centroid(scope)
