"""
Generic provider for OpenAI-compatible endpoints (LM Studio, vLLM, Ollama's
/v1 bridge) that support JSON mode but not schema-enforced output
"""

import json
from typing import Any, Dict, List, Optional

from langchain_core.messages import BaseMessage, SystemMessage
from langchain_openai import ChatOpenAI

from taleweaver.utils.logger import get_logger

from .base import BaseProvider, ProviderResponse

logger = get_logger(__name__)


class GenericProvider(BaseProvider):
    """OpenAI-compatible endpoint; the schema is sent as an instruction"""

    def __init__(self, api_base: str, api_key: str, model_name: str, temperature: float = 0.8):
        super().__init__(api_base, api_key, model_name, temperature)
        self.llm = ChatOpenAI(
            model=model_name,
            base_url=api_base,
            api_key=api_key or "not-needed",  # type: ignore
            temperature=temperature,
            max_retries=0,
        )

    async def _invoke(
        self,
        messages: List[BaseMessage],
        json_schema: Optional[Dict[str, Any]] = None,
        **kwargs,
    ) -> ProviderResponse:
        llm = self.llm
        if "temperature" in kwargs:
            llm = llm.bind(temperature=kwargs["temperature"])

        if json_schema is not None:
            llm = llm.bind(response_format={"type": "json_object"})
            messages = list(messages) + [
                SystemMessage(
                    content="Respond with a single JSON object matching this schema:\n"
                    + json.dumps(json_schema)
                )
            ]

        response = await llm.ainvoke(messages)
        content = response.content if hasattr(response, "content") else str(response)
        logger.debug(f"[Provider] Content preview: {str(content)[:300]}")
        return ProviderResponse(
            content=str(content),
            usage=getattr(response, "usage_metadata", None),
            model=self.model_name,
        )
