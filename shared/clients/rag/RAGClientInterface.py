from abc import abstractmethod
import json
import uuid

import httpx
from shared.clients.rag.models.Point import SearchHit, StoredPoint
from shared.clients.rag.models.VectorPayload import VectorPoint
from shared.clients.ClientInterface import ClientInterface

from shared.helper.HelperConfig import HelperConfig

# fixed namespace so the same key always maps to the same point id
_POINT_ID_NAMESPACE = uuid.UUID("6f1c2a4e-9b0d-5e3f-8a71-2c4d6e8f0a1b")


class RAGClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # collection config
        self.collection_messages = helper_config.get_string_val("RAG_COLLECTION_MESSAGES", default="convo-messages")
        self.collection_sessions = helper_config.get_string_val("RAG_COLLECTION_SESSIONS", default="convo-sessions")
        self.distance = helper_config.get_string_val("RAG_DISTANCE", default="Cosine")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "rag"

    def get_point_id(self, key: str) -> str:
        """
        Maps a vector-store key (e.g. "msg-42") to the deterministic point id used by the backend.

        Args:
            key (str): The vector-store key.

        Returns:
            str: A UUID5 string, identical for identical keys.
        """
        return str(uuid.uuid5(_POINT_ID_NAMESPACE, key))

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_points(self, collection: str) -> str:
        """
        Returns the endpoint path for points upsert requests.

        Returns:
            str: The endpoint path for points requests (e.g. "/collections/my_col/points")
        """
        pass

    @abstractmethod
    def _get_endpoint_get_points(self, collection: str) -> str:
        """
        Returns the endpoint path for fetching points by id.

        Returns:
            str: The endpoint path (e.g. "/collections/my_col/points")
        """
        pass

    @abstractmethod
    def _get_endpoint_search(self, collection: str) -> str:
        """
        Returns the endpoint path for nearest-neighbour search requests.

        Returns:
            str: The endpoint path (e.g. "/collections/my_col/points/search")
        """
        pass

    @abstractmethod
    def _get_endpoint_delete_points(self, collection: str) -> str:
        pass

    @abstractmethod
    def _get_endpoint_check_collection_existence(self, collection: str) -> str:
        """
        Returns the endpoint path for collection existence check requests.

        Returns:
            str: The endpoint path (e.g. "/collections/my_col/exists")
        """
        pass

    @abstractmethod
    def _get_endpoint_create_collection(self, collection: str) -> str:
        """
        Returns the endpoint path for create collection requests.

        Returns:
            str: The endpoint path (e.g. "/collections/my_col")
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        """
        Builds the backend-specific payload for creating a collection.

        Args:
            vector_size (int): Dimensionality of the vectors.
            distance (str): Distance metric (e.g. "Cosine").

        Returns:
            dict: The payload for the create collection request.
        """
        pass

    @abstractmethod
    def get_upsert_payload(self, points: list[VectorPoint]) -> dict:
        """
        Builds the backend-specific payload for a points upsert.

        Args:
            points (list[VectorPoint]): Points to upsert, identified by vector-store key.

        Returns:
            dict: The payload for the upsert request.
        """
        pass

    @abstractmethod
    def get_points_payload(self, keys: list[str], with_payload: bool, with_vector: bool) -> dict:
        """
        Builds the backend-specific payload for fetching points by key.

        Returns:
            dict: The payload for the get points request.
        """
        pass

    @abstractmethod
    def get_search_payload(self, vector: list[float], limit: int) -> dict:
        """
        Builds the backend-specific payload for a nearest-neighbour search.

        Returns:
            dict: The payload for the search request.
        """
        pass

    @abstractmethod
    def get_delete_payload(self, keys: list[str]) -> dict:
        pass

    ################ RESPONSE PARSER ##################
    @abstractmethod
    def extract_points(self, raw_response: dict) -> list[StoredPoint]:
        """
        Extracts stored points from a raw get points response.

        Args:
            raw_response (dict): The raw JSON response.

        Returns:
            list[StoredPoint]: The points that exist, in backend order.
        """
        pass

    @abstractmethod
    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        """
        Extracts search hits from a raw search response, converting backend scores to distances.

        Args:
            raw_response (dict): The raw JSON response.

        Returns:
            list[SearchHit]: Hits ordered by ascending distance.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_existence_check(self, collection: str) -> bool:
        """Check if a collection exists in the rag backend.

        Args:
            collection (str): The collection name.

        Returns:
            bool: True if the collection exists, False otherwise.
        """
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_check_collection_existence(collection),
            raise_on_error=True,
        )
        return bool(resp.json().get("result", {}).get("exists"))

    async def do_create_collection(self, collection: str, vector_size: int, distance: str | None = None) -> httpx.Response:
        """Create a collection in the rag backend.

        Args:
            collection (str): The collection name.
            vector_size (int): The size of the vectors in the collection.
            distance (str | None): The distance metric, defaults to RAG_DISTANCE.

        Returns:
            httpx.Response: The response from the create collection request.
        """
        return await self.do_request(
            method="PUT",
            json=self.get_create_collection_payload(vector_size, distance or self.distance),
            endpoint=self._get_endpoint_create_collection(collection),
            raise_on_error=True,
        )

    async def do_ensure_collection(self, collection: str, vector_size: int) -> None:
        """Create the collection if it does not exist yet."""
        if await self.do_existence_check(collection):
            return
        self.logging.info("Creating RAG collection '%s' (size %d, %s)", collection, vector_size, self.distance)
        await self.do_create_collection(collection, vector_size)

    async def do_upsert_points(self, collection: str, points: list[VectorPoint]) -> httpx.Response | None:
        """Upsert points into a rag backend collection.
        Inserts new points or replaces existing ones with the same key.

        Args:
            collection (str): The collection name.
            points (list[VectorPoint]): The points to upsert.

        Returns:
            httpx.Response | None: The response from the upsert request, None if there was nothing to upsert.
        """
        if not points:
            return None
        return await self.do_request(
            method="PUT",
            content=json.dumps(self.get_upsert_payload(points)),
            endpoint=self._get_endpoint_points(collection),
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
        )

    async def do_get_points(self, collection: str, keys: list[str], with_vector: bool = True, with_payload: bool = True) -> list[StoredPoint]:
        """Fetch points by vector-store key. Missing keys are simply absent from the result.

        Args:
            collection (str): The collection name.
            keys (list[str]): Vector-store keys to fetch.
            with_vector (bool): Whether to include the stored vectors.
            with_payload (bool): Whether to include the stored payloads.

        Returns:
            list[StoredPoint]: The points found.
        """
        if not keys:
            return []
        resp = await self.do_request(
            method="POST",
            content=json.dumps(self.get_points_payload(keys, with_payload, with_vector)),
            endpoint=self._get_endpoint_get_points(collection),
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
        )
        return self.extract_points(resp.json())

    async def do_search(self, collection: str, vector: list[float], limit: int) -> list[SearchHit]:
        """Nearest-neighbour search in a collection.

        Args:
            collection (str): The collection name.
            vector (list[float]): The query vector.
            limit (int): Maximum number of hits.

        Returns:
            list[SearchHit]: Hits ordered by ascending distance.
        """
        resp = await self.do_request(
            method="POST",
            content=json.dumps(self.get_search_payload(vector, limit)),
            endpoint=self._get_endpoint_search(collection),
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
        )
        return self.extract_search_hits(resp.json())

    async def do_delete_points(self, collection: str, keys: list[str]) -> None:
        """Delete points by vector-store key. Unknown keys are ignored by the backend."""
        if not keys:
            return
        await self.do_request(
            method="POST",
            content=json.dumps(self.get_delete_payload(keys)),
            endpoint=self._get_endpoint_delete_points(collection),
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
        )
