from shared.clients.ClientManager import ClientManager
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface


class EmbedClientManager(ClientManager):
    """Builds the embedding backend client selected by EMBED_ENGINE (default: ollama)."""

    client_type = "Embed"
    default_engine = "ollama"

    def get_client(self) -> EmbedClientInterface:
        return self.client
