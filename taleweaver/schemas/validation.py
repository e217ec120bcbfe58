"""
Schema validation and the shared decode-or-default helper
"""

import json
import re
from typing import Any, Callable, Dict, Optional, Type, TypeVar, Union

from jsonschema import ValidationError as SchemaValidationError
from jsonschema import validate
from pydantic import BaseModel, ValidationError

from taleweaver.utils.logger import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_ARRAY = re.compile(r"\[.*\]", re.DOTALL)


def clean_json(content: str) -> str:
    """
    Strip markdown fences and doubled braces, then cut the outermost
    object or array out of any surrounding chatter.
    """
    text = _FENCE.sub("", (content or "").strip()).strip()
    if text.startswith("{{") and text.endswith("}}"):
        text = text[1:-1]

    obj = _OBJECT.search(text)
    arr = _ARRAY.search(text)
    if obj and (not arr or obj.start() < arr.start()):
        return obj.group(0)
    if arr:
        return arr.group(0)
    return text


def validate_json_schema(data: Dict[str, Any], schema: Dict[str, Any]) -> bool:
    """Validate data against a JSON schema"""
    try:
        validate(instance=data, schema=schema)
        return True
    except SchemaValidationError as e:
        raise ValueError(f"JSON schema validation failed: {e.message}")


def decode_or_default(
    content: Union[str, Dict[str, Any], None],
    model: Type[ModelT],
    default: Union[ModelT, Callable[[], ModelT]],
    schema: Optional[Dict[str, Any]] = None,
    label: str = "",
) -> ModelT:
    """
    Decode a collaborator reply into ``model``.

    Any parse, schema or model failure yields ``default`` (called if it is
    a factory). This never raises.
    """
    tag = label or model.__name__

    def _fallback(reason: str) -> ModelT:
        logger.warning(f"[Parse] {tag}: {reason}; using default")
        return default() if callable(default) else default

    if content is None:
        return _fallback("empty response")

    if isinstance(content, dict):
        data: Any = content
    else:
        cleaned = clean_json(content)
        if not cleaned:
            return _fallback("empty response")
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.debug(f"[Parse] {tag} raw content preview: {content[:300]}")
            return _fallback(f"invalid JSON ({e})")

    if not isinstance(data, dict):
        return _fallback(f"expected an object, got {type(data).__name__}")

    if schema is not None:
        try:
            validate_json_schema(data, schema)
        except ValueError as e:
            return _fallback(str(e))

    try:
        return model.model_validate(data)
    except ValidationError as e:
        return _fallback(f"model validation failed ({e.error_count()} errors)")
