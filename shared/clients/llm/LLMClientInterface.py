from abc import abstractmethod
import re

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig

_THINK_BLOCK = re.compile(r"<think>[\s\S]*?</think>")


class LLMClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # chat / completion config
        self.chat_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_CHAT_MODEL", default="qwen3:8b")
        self.temperature = helper_config.get_float_val(f"{self.get_client_type().upper()}_TEMPERATURE", default=0.3)
        self.max_output_tokens = helper_config.get_int_val(f"{self.get_client_type().upper()}_MAX_OUTPUT_TOKENS", default=6000)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_chat(self) -> str:
        """Returns the endpoint path for chat/completion requests (e.g. "/api/chat")."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_chat_payload(self, messages: list[dict]) -> dict:
        """Build the backend-specific request body for a chat/completion request.

        Args:
            messages (list[dict]): OpenAI-format messages
                (e.g. [{"role": "user", "content": "..."}]).

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the assistant reply text from a raw chat API response.

        Raises:
            ValueError: If the response does not contain a valid reply.
        """
        pass

    def clean_reply(self, reply: str) -> str:
        """Strip reasoning blocks some models emit before the actual answer."""
        return _THINK_BLOCK.sub("", reply).strip()

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_chat(self, messages: list[dict]) -> str:
        """Send a chat/completion request and return the cleaned assistant reply text.

        Args:
            messages (list[dict]): OpenAI-format messages.

        Returns:
            str: The assistant reply text without reasoning blocks.

        Raises:
            httpx.TransportError: If the backend stayed unreachable after all retries.
            ClientResponseError: If the backend answered with an error status.
            ValueError: If the response does not contain a valid reply.
        """
        body = self.get_chat_payload(messages)
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_chat(),
            json=body,
            raise_on_error=True,
        )
        return self.clean_reply(self.extract_chat_response(response.json()))

    async def do_prompt(self, prompt: str) -> str:
        """Send a single user prompt and return the reply."""
        return await self.do_chat([{"role": "user", "content": prompt}])
