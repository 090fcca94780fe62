from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.Point import SearchHit, StoredPoint
from shared.clients.rag.models.VectorPayload import VectorPoint
from shared.models.config import EnvConfig


class RAGClientQdrant(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_points(self, collection: str) -> str:
        return f"/collections/{collection}/points"

    def _get_endpoint_get_points(self, collection: str) -> str:
        return f"/collections/{collection}/points"

    def _get_endpoint_search(self, collection: str) -> str:
        return f"/collections/{collection}/points/search"

    def _get_endpoint_delete_points(self, collection: str) -> str:
        return f"/collections/{collection}/points/delete"

    def _get_endpoint_check_collection_existence(self, collection: str) -> str:
        return f"/collections/{collection}/exists"

    def _get_endpoint_create_collection(self, collection: str) -> str:
        return f"/collections/{collection}"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_create_collection_payload(self, vector_size: int, distance: str) -> dict:
        return {"vectors": {"size": vector_size, "distance": distance}}

    def get_upsert_payload(self, points: list[VectorPoint]) -> dict:
        return {
            "points": [
                {
                    "id": self.get_point_id(point.key),
                    "vector": point.vector,
                    "payload": point.payload.model_dump(),
                }
                for point in points
            ]
        }

    def get_points_payload(self, keys: list[str], with_payload: bool, with_vector: bool) -> dict:
        return {
            "ids": [self.get_point_id(key) for key in keys],
            "with_payload": with_payload,
            "with_vector": with_vector,
        }

    def get_search_payload(self, vector: list[float], limit: int) -> dict:
        return {"vector": vector, "limit": limit, "with_payload": True}

    def get_delete_payload(self, keys: list[str]) -> dict:
        return {"points": [self.get_point_id(key) for key in keys]}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def _score_to_distance(self, score: float) -> float:
        # Euclid scores are already distances, Cosine/Dot scores are similarities
        if self.distance.lower() == "euclid":
            return score
        return 1.0 - score

    def extract_points(self, raw_response: dict) -> list[StoredPoint]:
        points = []
        for raw in raw_response.get("result", []) or []:
            payload = raw.get("payload") or {}
            points.append(StoredPoint(
                key=payload.get("key", str(raw.get("id"))),
                payload=payload,
                vector=raw.get("vector"),
            ))
        return points

    def extract_search_hits(self, raw_response: dict) -> list[SearchHit]:
        hits = []
        for raw in raw_response.get("result", []) or []:
            payload = raw.get("payload") or {}
            hits.append(SearchHit(
                key=payload.get("key", str(raw.get("id"))),
                distance=self._score_to_distance(float(raw.get("score", 0.0))),
                payload=payload,
            ))
        return hits
