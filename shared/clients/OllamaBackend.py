from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class OllamaBackend:
    """Connection settings shared by every client talking to an Ollama server.

    Mixed in ahead of the type interface, e.g. ``class EmbedClientOllama(OllamaBackend, EmbedClientInterface)``.
    Reads ``<TYPE>_OLLAMA_BASE_URL`` and the optional ``<TYPE>_OLLAMA_API_KEY`` used
    behind authenticating reverse proxies.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    def _get_engine_name(self) -> str:
        return "Ollama"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    def _get_auth_header(self) -> dict:
        return {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        # "Ollama is running" on the root path
        return ""
