from shared.clients.ClientManager import ClientManager
from shared.clients.db.DBClientInterface import DBClientInterface


class DBClientManager(ClientManager):
    """Builds the relational store client selected by DB_ENGINE (default: postgres)."""

    client_type = "DB"
    default_engine = "postgres"

    def get_client(self) -> DBClientInterface:
        return self.client
