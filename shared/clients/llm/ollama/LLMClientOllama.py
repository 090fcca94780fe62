from shared.clients.OllamaBackend import OllamaBackend
from shared.clients.llm.LLMClientInterface import LLMClientInterface


class LLMClientOllama(OllamaBackend, LLMClientInterface):

    ################ ENDPOINTS ##################
    def _get_endpoint_chat(self) -> str:
        return "/api/chat"

    ################ PAYLOAD BUILDER ##################
    def get_chat_payload(self, messages: list[dict]) -> dict:
        """Build a non-streaming /api/chat body.

        Thinking is disabled and num_predict bounds the output so summaries stay
        usable as embedding input.
        """
        return {
            "model": self.chat_model,
            "messages": messages,
            "stream": False,
            "think": False,
            "options": {"temperature": self.temperature, "num_predict": self.max_output_tokens},
        }

    ##########################################
    ############### RESPONSES ################
    ##########################################

    def extract_chat_response(self, response_data: dict) -> str:
        content = (response_data.get("message") or {}).get("content")
        if content is None:
            raise ValueError(f"Ollama chat response does not contain a message. Response keys: {list(response_data.keys())}")
        return content
