"""
Abstract base class for Narrative Service providers using LangChain
"""

import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from langchain_core.messages import BaseMessage, HumanMessage
from pydantic import BaseModel

from taleweaver.utils.logger import get_logger
from taleweaver.utils.retry import ProviderError, ProviderOverloadedError, is_overloaded_error

logger = get_logger(__name__)


class ProviderResponse(BaseModel):
    """Response from an LLM provider"""

    content: str
    usage: Optional[Dict[str, Any]] = None
    model: Optional[str] = None


class BaseProvider(ABC):
    """Abstract base class for request/response LLM providers"""

    def __init__(self, api_base: str, api_key: str, model_name: str, temperature: float = 0.8):
        self.api_base = api_base
        self.api_key = api_key
        self.model_name = model_name
        self.temperature = temperature
        self.llm: Any = None  # Set by subclasses

    def _log_llm_call(self, messages: List[BaseMessage], **kwargs) -> str:
        """Log LLM call details and return a call ID for correlation"""
        call_id = str(uuid.uuid4())[:8]
        message_counts: Dict[str, int] = {}
        total_chars = 0
        for msg in messages:
            msg_type = type(msg).__name__
            message_counts[msg_type] = message_counts.get(msg_type, 0) + 1
            total_chars += len(str(msg.content))

        logger.info(
            f"[LLM] Call started: {self.model_name}",
            extra={
                "component": "LLM",
                "call_id": call_id,
                "model": self.model_name,
                "provider": self.__class__.__name__,
                "message_count": len(messages),
                "message_types": message_counts,
                "total_input_chars": total_chars,
                "structured": bool(kwargs.get("json_schema")),
            },
        )
        return call_id

    def _log_llm_response(
        self,
        call_id: str,
        content: str,
        started: float,
        error: Optional[BaseException] = None,
    ) -> None:
        duration_ms = round((time.perf_counter() - started) * 1000, 1)
        if error is not None:
            logger.error(
                f"[LLM] Call failed: {self.model_name} ({duration_ms}ms): {error}",
                extra={
                    "component": "LLM",
                    "call_id": call_id,
                    "model": self.model_name,
                    "duration_ms": duration_ms,
                    "error_type": type(error).__name__,
                },
            )
            return
        logger.info(
            f"[LLM] Call completed: {self.model_name} ({duration_ms}ms)",
            extra={
                "component": "LLM",
                "call_id": call_id,
                "model": self.model_name,
                "duration_ms": duration_ms,
                "response_chars": len(content),
            },
        )

    def _translate_error(self, error: Exception) -> ProviderError:
        """Map SDK exceptions onto the engine's retry taxonomy."""
        if is_overloaded_error(error):
            return ProviderOverloadedError(
                f"{self.__class__.__name__} overloaded: {error}",
                status_code=getattr(error, "status_code", None),
            )
        return ProviderError(f"{self.__class__.__name__} error: {error}")

    async def chat(
        self,
        messages: List[BaseMessage],
        json_schema: Optional[Dict[str, Any]] = None,
        **kwargs,
    ) -> ProviderResponse:
        """
        Send a chat request to the provider

        Args:
            messages: List of LangChain message objects
            json_schema: Optional JSON schema the reply must follow
            **kwargs: Additional provider-specific parameters

        Returns:
            ProviderResponse whose content is the raw text (JSON when a
            schema was given)

        Raises:
            ProviderOverloadedError: the service reported overload
            ProviderError: any other transport or SDK failure
        """
        call_id = self._log_llm_call(messages, json_schema=json_schema, **kwargs)
        started = time.perf_counter()
        try:
            response = await self._invoke(messages, json_schema=json_schema, **kwargs)
        except ProviderError as e:
            self._log_llm_response(call_id, "", started, error=e)
            raise
        except Exception as e:
            translated = self._translate_error(e)
            self._log_llm_response(call_id, "", started, error=translated)
            raise translated from e
        self._log_llm_response(call_id, response.content, started)
        return response

    @abstractmethod
    async def _invoke(
        self,
        messages: List[BaseMessage],
        json_schema: Optional[Dict[str, Any]] = None,
        **kwargs,
    ) -> ProviderResponse:
        pass

    async def health_check(self) -> bool:
        """Check if the provider is healthy and accessible"""
        try:
            await self.llm.ainvoke([HumanMessage(content="Hello")])
            return True
        except Exception as e:
            logger.warning(f"[LLM] Health check failed for {self.model_name}: {e}")
            return False

