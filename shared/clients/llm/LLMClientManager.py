from shared.clients.ClientManager import ClientManager
from shared.clients.llm.LLMClientInterface import LLMClientInterface


class LLMClientManager(ClientManager):
    """Builds the chat client used for summaries and rephrasing, selected by LLM_ENGINE (default: ollama)."""

    client_type = "LLM"
    default_engine = "ollama"

    def get_client(self) -> LLMClientInterface:
        return self.client
