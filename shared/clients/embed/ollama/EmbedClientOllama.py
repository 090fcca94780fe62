from shared.clients.OllamaBackend import OllamaBackend
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.models.errors import EmbedError, EmbedErrorKind


class EmbedClientOllama(OllamaBackend, EmbedClientInterface):

    ################ ENDPOINTS ##################
    def _get_endpoint_models(self) -> str:
        return "/api/tags"

    def get_endpoint_embedding(self) -> str:
        return "/api/embed"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        return {"model": self.embed_model, "input": texts}

    ##########################################
    ############### RESPONSES ################
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        embeddings = response_data.get("embeddings")
        if not embeddings or not embeddings[0]:
            raise EmbedError(
                EmbedErrorKind.FATAL,
                f"Ollama response does not contain valid embeddings. Response keys: {list(response_data.keys())}",
            )
        return embeddings

    def is_non_finite_error(self, status_code: int, body: str) -> bool:
        # some models (bge-m3) fail to encode the response for specific token
        # sequences: {"error":"failed to encode response: json: unsupported value: NaN"}
        return status_code >= 500 and "NaN" in body

    def extract_model_names(self, response_data: dict) -> list[str]:
        return [m.get("name", "") for m in response_data.get("models", [])]
