"""Query vector composition.

Combines the query text, a negative query and weighted session/project
exemplars into one search vector, Rocchio style:

    v = embed(query) - embed(negative_query)
        + sum(weight * centroid for liked exemplars)
        - sum(weight * DAMPENING * centroid for unliked exemplars)

and returns it unit-normalized.
"""

import math

import numpy as np

from shared.clients.db.DBClientInterface import DBClientInterface
from shared.helper import HelperVector
from shared.helper.HelperConfig import HelperConfig
from shared.models.conversation import ScopeKind
from shared.models.search import ResolvedExemplar, WeightedExemplar
from services.embedding.BatchEmbedder import BatchEmbedder


def parse_weighted_ids(values: list[str] | None) -> list[WeightedExemplar]:
    """Parse "identifier" / "identifier:weight" entries.

    The string is split at its last colon. A suffix that is not a finite number
    makes the whole string the identifier with weight 1.0. Entries with an
    empty identifier are dropped.

    Args:
        values (list[str] | None): Raw entries.

    Returns:
        list[WeightedExemplar]: Parsed exemplars, in input order.
    """
    exemplars: list[WeightedExemplar] = []
    for value in values or []:
        value = value.strip()
        identifier, sep, suffix = value.rpartition(":")
        weight = 1.0
        if sep:
            try:
                weight = float(suffix)
                if not math.isfinite(weight):
                    raise ValueError(suffix)
            except ValueError:
                identifier, weight = value, 1.0
        else:
            identifier = value
        identifier = identifier.strip()
        if identifier:
            exemplars.append(WeightedExemplar(id=identifier, weight=weight))
    return exemplars


class QueryComposer:
    def __init__(
        self,
        helper_config: HelperConfig,
        db_client: DBClientInterface,
        batch_embedder: BatchEmbedder,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._db_client = db_client
        self._batch_embedder = batch_embedder
        self.dimensions = helper_config.get_int_val("EMBED_DIMENSIONS", default=1024)
        self.unlike_dampening = helper_config.get_float_val("SEARCH_UNLIKE_DAMPENING", default=0.2)

    async def do_resolve(self, kind: ScopeKind, exemplars: list[WeightedExemplar]) -> list[ResolvedExemplar]:
        """Attach stored centroids to exemplars.

        Non-numeric ids, unknown ids and scopes without a centroid are dropped silently.
        """
        resolved: list[ResolvedExemplar] = []
        for exemplar in exemplars:
            try:
                scope_id = int(exemplar.id)
            except ValueError:
                continue
            centroid = await self._db_client.do_get_centroid(kind, scope_id)
            if centroid is None:
                self.logging.debug("No centroid for %s %s, ignoring exemplar", kind.value, exemplar.id)
                continue
            resolved.append(ResolvedExemplar(id=exemplar.id, weight=exemplar.weight, centroid=centroid))
        return resolved

    async def do_compose(
        self,
        query: str | None,
        negative_query: str | None,
        like: list[ResolvedExemplar],
        unlike: list[ResolvedExemplar],
    ) -> np.ndarray:
        """Compose the normalized search vector.

        Args:
            query (str | None): Query text, a zero vector is used when absent.
            negative_query (str | None): Text whose embedding is subtracted.
            like (list[ResolvedExemplar]): Exemplars pulled towards, scaled by weight.
            unlike (list[ResolvedExemplar]): Exemplars pushed away, scaled by weight and dampening.

        Returns:
            np.ndarray: Unit vector, or the zero vector when everything cancels out.

        Raises:
            DimensionMismatchError: If any input vector has the wrong dimension.
        """
        if query:
            vector = HelperVector.to_array(await self._batch_embedder.do_embed_query(query))
        else:
            vector = np.zeros(self.dimensions, dtype=np.float64)
        HelperVector.check_dimension(vector, self.dimensions, context="query")

        if negative_query:
            negative = HelperVector.to_array(await self._batch_embedder.do_embed_query(negative_query))
            vector = HelperVector.subtract(vector, negative)

        for exemplar in like:
            centroid = HelperVector.to_array(exemplar.centroid)
            vector = HelperVector.add(vector, HelperVector.scale(centroid, exemplar.weight))

        for exemplar in unlike:
            centroid = HelperVector.to_array(exemplar.centroid)
            vector = HelperVector.subtract(
                vector, HelperVector.scale(centroid, exemplar.weight * self.unlike_dampening)
            )

        return HelperVector.normalize(vector)
