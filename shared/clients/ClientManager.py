from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig


class ClientManager:
    """
    Instantiates the client configured by ``<TYPE>_ENGINE``.

    Engines are looked up by convention: engine "qdrant" for type "RAG" resolves to
    class ``RAGClientQdrant`` in ``shared.clients.rag.qdrant.RAGClientQdrant``.
    Subclasses only name the client type and the default engine.
    """

    client_type: str = ""
    default_engine: str = ""

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        engine = self.helper_config.get_string_val(f"{self.client_type.upper()}_ENGINE", default=self.default_engine)
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> ClientInterface:
        """
        Raises:
            ValueError: If the engine is unsupported or cannot be imported.
        """
        engine = self._get_engine_from_env()
        class_name = f"{self.client_type}Client{engine}"
        try:
            module = __import__(
                f"shared.clients.{self.client_type.lower()}.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported {self.client_type} engine specified: '{engine}'. Error: {e}")
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated %s client for engine: %s", self.client_type, engine)
        return client

    def get_client(self) -> ClientInterface:
        return self.client
