from abc import abstractmethod
import math

import httpx
from shared.clients.ClientInterface import ClientInterface
from shared.models.errors import EmbedError, EmbedErrorKind

from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default="bge-m3")
        self.embed_dimensions = helper_config.get_int_val(f"{self.get_client_type().upper()}_DIMENSIONS", default=1024)

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def check_vectors(self, vectors: list[list[float]], expected_count: int) -> None:
        """Validate count, dimensionality and finiteness of returned vectors.

        Args:
            vectors (list[list[float]]): Vectors extracted from the response.
            expected_count (int): Number of input texts.

        Raises:
            EmbedError: FATAL on a count or dimension mismatch, NON_FINITE if any
                component is NaN or infinite.
        """
        if len(vectors) != expected_count:
            raise EmbedError(
                EmbedErrorKind.FATAL,
                f"expected {expected_count} embeddings, got {len(vectors)}",
            )
        for index, vector in enumerate(vectors):
            if len(vector) != self.embed_dimensions:
                raise EmbedError(
                    EmbedErrorKind.FATAL,
                    f"embedding {index} has {len(vector)} dimensions, configured {self.embed_dimensions}",
                )
            if not all(math.isfinite(v) for v in vector):
                raise EmbedError(EmbedErrorKind.NON_FINITE, f"NaN in embedding {index}")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "embed"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_models(self) -> str:
        """
        Returns the endpoint path for model listing requests (e.g. "/api/tags").
        """
        pass

    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests (e.g. "/api/embed").
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            EmbedError: FATAL if the response format is invalid.
        """
        pass

    @abstractmethod
    def is_non_finite_error(self, status_code: int, body: str) -> bool:
        """
        Returns True when an error response means the model produced NaN/Infinity
        for the given input (content dependent, not transient).
        """
        pass

    @abstractmethod
    def extract_model_names(self, response_data: dict) -> list[str]:
        """
        Returns the names of the models listed by the model listing endpoint.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_fetch_models(self) -> list[str]:
        """Fetch the names of the models available on the backend."""
        response = await self.do_request(method="GET", endpoint=self._get_endpoint_models(), raise_on_error=True)
        return self.extract_model_names(response.json())

    async def do_check_model(self) -> bool:
        """Return True if the configured embedding model is available on the backend."""
        models = await self.do_fetch_models()
        return any(self.embed_model in name for name in models)

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Send one embedding request and return the validated vectors.

        Args:
            texts (list[str] | str): One or more texts to embed.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            EmbedError: TRANSIENT when the backend stayed unreachable after all
                retries, NON_FINITE when the model produced NaN/Infinity, FATAL
                for any other failure.
        """
        texts = [texts] if isinstance(texts, str) else texts
        body = self.get_embed_payload(texts)
        try:
            response = await self.do_request(method="POST", endpoint=self.get_endpoint_embedding(), json=body)
        except httpx.TransportError as e:
            raise EmbedError(EmbedErrorKind.TRANSIENT, f"{type(e).__name__}: {e}") from e

        if response.status_code != 200:
            if self.is_non_finite_error(response.status_code, response.text):
                raise EmbedError(EmbedErrorKind.NON_FINITE, response.text[:200])
            self.logging.error(
                "Embedding request failed: status %d, body: %s",
                response.status_code,
                response.text[:200],
            )
            raise EmbedError(EmbedErrorKind.FATAL, "Embedding request failed with status %d." % response.status_code)

        vectors = self.extract_embeddings_from_response(response.json())
        self.check_vectors(vectors, expected_count=len(texts))
        return vectors
