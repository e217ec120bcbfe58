"""
OpenAI provider implementation using LangChain
"""

import json
from typing import Any, Dict, List, Optional

from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI

from taleweaver.utils.logger import get_logger

from .base import BaseProvider, ProviderResponse

logger = get_logger(__name__)


class OpenAIProvider(BaseProvider):
    """OpenAI chat models with native structured output"""

    def __init__(self, api_base: str, api_key: str, model_name: str, temperature: float = 0.8):
        super().__init__(api_base, api_key, model_name, temperature)
        self.llm = ChatOpenAI(
            model=model_name,
            base_url=api_base,
            api_key=api_key or None,  # type: ignore
            temperature=temperature,
            max_retries=0,
        )
        logger.info(f"Initialized OpenAI provider for {model_name}")

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
            structured_llm = llm.with_structured_output(json_schema)
            logger.debug("[Provider] with_structured_output → invoking model")
            structured = await structured_llm.ainvoke(messages)
            # Downstream decoders expect text
            return ProviderResponse(content=json.dumps(structured), model=self.model_name)

        response = await llm.ainvoke(messages)
        content = response.content if hasattr(response, "content") else str(response)
        logger.debug(f"[Provider] Content preview: {str(content)[:300]}")
        return ProviderResponse(
            content=str(content),
            usage=getattr(response, "usage_metadata", None),
            model=self.model_name,
        )
