from abc import ABC, abstractmethod
import asyncio
from typing import Any

import httpx
from httpx._types import QueryParamTypes, RequestContent

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import ClientResponseError


class ClientInterface(ABC):
    """Base for every backend client (embedding, LLM, vector store, database).

    A concrete client is identified by its type ("embed", "rag", ...) and its
    engine ("ollama", "qdrant", ...). Engine settings are read from
    ``<TYPE>_<ENGINE>_<KEY>`` environment variables, shared transport settings
    from ``<TYPE>_TIMEOUT``, ``<TYPE>_MAX_RETRIES`` and ``<TYPE>_RETRY_DELAY``.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config

        type_prefix = self.get_client_type().upper()
        self.timeout = helper_config.get_number_val(f"{type_prefix}_TIMEOUT", default=30.0)
        self.max_retries = max(1, int(helper_config.get_number_val(f"{type_prefix}_MAX_RETRIES", default=3)))
        self.retry_delay = helper_config.get_number_val(f"{type_prefix}_RETRY_DELAY", default=5)

        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """
        Reads every required engine setting once so a misconfigured client fails at construction.

        Raises:
            ValueError: If a required setting is missing or has the wrong type.
        """
        for config in self._get_required_config():
            self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "embed"
        """
        pass

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """
        Returns the name of the engine used by the client. E.g. "Qdrant"
        """
        pass

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """
        Returns:
            list[EnvConfig]: The engine settings that must be present for the client to work.
        """
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        return f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Reads an engine setting, e.g. raw_key "URL" on the qdrant RAG client reads RAG_QDRANT_URL.

        Args:
            raw_key (str): Setting name without the type and engine prefix
            default (Any): Value used when the variable is not set
            val_type (str): One of "string", "number", "bool", "list"
        """
        getters = {
            "string": self._helper_config.get_string_val,
            "number": self._helper_config.get_number_val,
            "bool": self._helper_config.get_bool_val,
            "list": self._helper_config.get_list_val,
        }
        if val_type not in getters:
            raise ValueError(f"Unsupported config value type '{val_type}' for {self._get_config_key_name(raw_key)}")
        return getters[val_type](self._get_config_key_name(raw_key), default=default)

    ################ AUTH ##################
    @abstractmethod
    def _get_auth_header(self) -> dict:
        """
        Returns:
            dict: Headers authenticating against the backend, empty if no key is configured.
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        """Request the healthcheck endpoint.

        Raises:
            ClientResponseError: If the backend answers with a non-2xx status.
        """
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck(), raise_on_error=True)

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self) -> None:
        self._client = httpx.AsyncClient(timeout=self.timeout)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def do_request(
        self,
        method: str = "GET",
        content: RequestContent | None = None,
        json: dict | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Send a request to the backend, retrying transport failures.

        Timeouts and connection errors are retried up to max_retries attempts,
        retry_delay seconds apart. HTTP error statuses are returned as they are,
        or raised when raise_on_error is set.

        Args:
            method: HTTP method.
            content: Raw request body, takes precedence over json.
            json: JSON body.
            params: URL query parameters.
            endpoint: Path appended to the base URL.
            additional_headers: Extra headers, overriding the auth header.
            raise_on_error: Raise ClientResponseError on a non-2xx status.

        Raises:
            Exception: If boot() was not called.
            httpx.TransportError: If the last attempt still failed.
            ClientResponseError: On a non-2xx status when raise_on_error is True.
        """
        if self._client is None:
            raise Exception("HTTP client not initialised. Call boot() before making requests.")

        endpoint = endpoint.strip().lstrip("/")
        url = f"{self._get_base_url().rstrip('/')}/{endpoint}" if endpoint else self._get_base_url().rstrip("/")
        headers = {**self._get_auth_header(), **(additional_headers or {})}

        body: dict = {}
        if content is not None:
            body["content"] = content
        elif json is not None:
            body["json"] = json

        response = await self._send_with_retry(method, url, headers=headers, params=params, **body)

        if raise_on_error and not response.is_success:
            self.logging.error("Request to %s failed with status %d: %s", url, response.status_code, response.text[:500])
            raise ClientResponseError(url=url, status_code=response.status_code, body=response.text)
        return response

    async def _send_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._client.request(method, url, timeout=self.timeout, **kwargs)
            except httpx.TransportError as e:
                if attempt == self.max_retries:
                    self.logging.error("%s request to %s failed after %d attempts: %s", self.get_client_type(), url, attempt, e)
                    raise
                self.logging.warning(
                    "%s request to %s failed (attempt %d/%d): %s. Retrying in %ss...",
                    self.get_client_type(), url, attempt, self.max_retries, e, self.retry_delay,
                )
                await asyncio.sleep(self.retry_delay)
