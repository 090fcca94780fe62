from shared.clients.ClientManager import ClientManager
from shared.clients.rag.RAGClientInterface import RAGClientInterface


class RAGClientManager(ClientManager):
    """Builds the vector index client selected by RAG_ENGINE (default: qdrant)."""

    client_type = "RAG"
    default_engine = "qdrant"

    def get_client(self) -> RAGClientInterface:
        return self.client
