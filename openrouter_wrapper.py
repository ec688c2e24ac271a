import json
import base64
import binascii
import logging
from datetime import datetime
from typing import Optional, Union, List, Type, Dict, Any, Literal

import aiohttp
from pydantic import BaseModel, ValidationError

from process_sequence.artifact import ImagePayload
from process_sequence.errors import (
    ConfigurationError,
    ContentPolicyBlockError,
    CopyrightBlockError,
    GenerationError,
    MalformedResponseError,
    TransientOverloadError,
)

logger = logging.getLogger(__name__)

ReasoningEffort = Literal["minimal", "low", "medium", "high"]

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_TEXT_MODEL = "google/gemini-2.5-flash"

TRANSIENT_STATUS_CODES = {429, 502, 503, 529}
TRANSIENT_MARKERS = ("overloaded", "resource_exhausted", "rate limit", "rate-limit")

# Provider finish reasons (Gemini native reasons are passed through by OpenRouter)
POLICY_FINISH_REASONS = {
    "content_filter", "safety", "prohibited_content", "blocklist", "spii",
    "image_safety", "image_prohibited_content",
}
RECITATION_FINISH_REASONS = {"recitation", "image_recitation"}


def _log_llm_call(log_path: str, start_time: datetime, end_time: datetime, tokens_in: int, tokens_out: int, function_name: str, prompt_preview: str):
    """Append one line of call information to the LLM call log."""
    duration = (end_time - start_time).total_seconds()
    log_line = f"{start_time.strftime('%Y-%m-%d %H:%M:%S')} | {function_name} | Duration: {duration:.2f}s | Tokens In: {tokens_in} | Tokens Out: {tokens_out} | Prompt: {prompt_preview}\n"

    with open(log_path, "a", encoding="utf-8") as f:
        f.write(log_line)


def _count_tokens_in_messages(messages: List[Dict[str, Any]]) -> int:
    """Rough token count estimation for input messages"""
    total_chars = 0
    for msg in messages:
        content = msg.get("content", "")
        if isinstance(content, str):
            total_chars += len(content)
        elif isinstance(content, list):
            for item in content:
                if isinstance(item, dict) and item.get("type") == "text":
                    total_chars += len(item.get("text", ""))
    # Rough estimation: ~4 characters per token
    return total_chars // 4


def _build_messages(context: Optional[Union[str, List[Dict[str, Any]]]], text: str) -> List[Dict[str, Any]]:
    """Build message list for API request.

    Args:
        context: System message (string) or conversation history (list)
        text: User's text prompt

    Returns:
        List of message dicts ready for API
    """
    messages = []

    if context:
        if isinstance(context, str):
            messages.append({"role": "system", "content": context})
        elif isinstance(context, list):
            messages.extend(context)

    messages.append({"role": "user", "content": [{"type": "text", "text": text}]})
    return messages


def _build_payload(
    model: str,
    messages: List[Dict[str, Any]],
    reasoning_effort: Optional[ReasoningEffort],
    response_format: Optional[Type[BaseModel]] = None,
    aspect_ratio: Optional[str] = None,
) -> Dict[str, Any]:
    """Build API request payload.

    Args:
        model: Model identifier
        messages: Message list from _build_messages()
        reasoning_effort: Reasoning level or None to omit the field
        response_format: Optional Pydantic model for structured output
        aspect_ratio: When set, the request asks for an image in this ratio

    Returns:
        Payload dict ready for API request
    """
    payload = {"model": model, "messages": messages}

    if reasoning_effort is not None:
        payload["reasoning"] = {"effort": reasoning_effort, "exclude": True}

    if response_format is not None:
        payload["response_format"] = {
            "type": "json_schema",
            "json_schema": {
                "name": response_format.__name__,
                "schema": response_format.model_json_schema()
            }
        }

    if aspect_ratio is not None:
        payload["modalities"] = ["image", "text"]
        payload["image_config"] = {"aspect_ratio": aspect_ratio}

    return payload


def _raise_for_error(status: int, body: Any) -> None:
    """Turn an HTTP error status or an error body into a typed exception."""
    error = body.get("error") if isinstance(body, dict) else None
    if status < 400 and not error:
        return

    if isinstance(error, dict):
        message = str(error.get("message") or "")
        code = error.get("code")
        metadata = error.get("metadata") or {}
    else:
        message = str(error or body or "")
        code = None
        metadata = {}

    if isinstance(code, int) and status < 400:
        status = code

    lowered = message.lower()
    details = {"status": status, "provider_message": message[:300]}

    # Client errors other than 429 are permanent whatever their message says
    client_error = 400 <= status < 500
    if status in TRANSIENT_STATUS_CODES or (
        not client_error and any(marker in lowered for marker in TRANSIENT_MARKERS)
    ):
        raise TransientOverloadError(f"Service overloaded or rate limited ({status}): {message[:200]}", details)

    # OpenRouter answers flagged input with 403 and moderation reasons
    if status == 403 and metadata.get("reasons"):
        details["reasons"] = metadata.get("reasons")
        raise ContentPolicyBlockError("Prompt was flagged by moderation", details)

    raise GenerationError(f"Generation request failed ({status}): {message[:200]}", details)


def _finish_details(full_response: Dict[str, Any]) -> Dict[str, Any]:
    """Finish reasons reported for the first choice, for error details."""
    try:
        choice = full_response["choices"][0]
    except (KeyError, IndexError, TypeError):
        return {}
    if not isinstance(choice, dict):
        return {}
    return {
        key: choice[key]
        for key in ("finish_reason", "native_finish_reason")
        if choice.get(key)
    }


def _check_finish_reason(full_response: Dict[str, Any]) -> None:
    """Raise the block error matching the finish condition, if any."""
    reasons = {str(reason).lower() for reason in _finish_details(full_response).values()}

    if reasons & RECITATION_FINISH_REASONS:
        raise CopyrightBlockError("Generation blocked for recitation of protected content", {"finish_reason": sorted(reasons)})
    if reasons & POLICY_FINISH_REASONS:
        raise ContentPolicyBlockError("Generation blocked by content policy", {"finish_reason": sorted(reasons)})


def _extract_message_content(full_response: Dict[str, Any]) -> str:
    try:
        content = full_response["choices"][0]["message"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""
    if isinstance(content, list):
        return "".join(part.get("text", "") for part in content if isinstance(part, dict))
    return content or ""


def _extract_image_url(full_response: Dict[str, Any]) -> Optional[str]:
    """Extract image URL from API response.

    Handles multiple response formats:
    - {"images": [{"image_url": {"url": "data:image/..."}}]}
    - {"images": [{"image_url": "data:image/..."}]}
    - Content field with data URL

    Args:
        full_response: Full API response dict

    Returns:
        Image data URL string or None if not found
    """
    # Method 1: Check for images array in message
    try:
        images = full_response.get('choices', [{}])[0].get('message', {}).get('images', [])
        if images and len(images) > 0:
            image_url_field = images[0].get('image_url')
            if isinstance(image_url_field, dict):
                return image_url_field.get('url')
            elif isinstance(image_url_field, str):
                return image_url_field
    except (KeyError, IndexError, TypeError, AttributeError):
        pass

    # Method 2: Check if message content itself is a data URL
    content = _extract_message_content(full_response)
    if content.startswith('data:image/'):
        return content

    return None


def _decode_image_data(image_data_url: str) -> ImagePayload:
    """Decode base64 image data from data URL.

    Args:
        image_data_url: Data URL string (e.g., "data:image/png;base64,...")

    Returns:
        Decoded image payload

    Raises:
        MalformedResponseError: If decoding fails
    """
    try:
        header, base64_data = image_data_url.split(',', 1)
        mime_type = header[len("data:"):].split(';', 1)[0] or "image/png"
        return ImagePayload(mime_type=mime_type, data=base64.b64decode(base64_data, validate=True))
    except (ValueError, binascii.Error) as e:
        raise MalformedResponseError(f"Failed to decode base64 image data: {e}")


def _strip_code_fence(content: str) -> str:
    stripped = content.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def _parse_structured_response(message_content: str, response_format: Optional[Type[BaseModel]]) -> Union[str, BaseModel]:
    """Parse structured output if requested.

    Args:
        message_content: Raw message content
        response_format: Optional Pydantic model class

    Returns:
        Parsed Pydantic model, or the text when no format was requested

    Raises:
        MalformedResponseError: If the content is empty or does not match the schema
    """
    if not message_content or not message_content.strip():
        raise MalformedResponseError("Empty response from text model")
    if response_format is None:
        return message_content
    try:
        return response_format.model_validate_json(_strip_code_fence(message_content))
    except ValidationError as e:
        raise MalformedResponseError(
            f"Response does not match {response_format.__name__}: {e.error_count()} validation error(s)",
            {"errors": e.errors(include_url=False)[:5]},
        )


def _process_image_response(full_response: Dict[str, Any]) -> ImagePayload:
    """Process and decode image from API response.

    Raises:
        MalformedResponseError: If the model answered with text or nothing at all
    """
    image_data_url = _extract_image_url(full_response)

    if image_data_url and image_data_url.startswith('data:image/'):
        return _decode_image_data(image_data_url)

    details = _finish_details(full_response)
    text = _extract_message_content(full_response).strip()
    if text:
        details["text_preview"] = text[:200]
        raise MalformedResponseError("Model returned text instead of an image", details)
    raise MalformedResponseError("Empty response from image model", details)


class OpenRouterClient:
    """Async OpenRouter client shared by every pipeline component.

    One instance holds the API key and a single aiohttp session. Errors are
    raised as the typed exceptions of ``process_sequence.errors`` so callers
    never inspect message text.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        text_model: str = DEFAULT_TEXT_MODEL,
        log_path: Optional[str] = "llm_log.txt",
        session: Optional[aiohttp.ClientSession] = None,
    ):
        if not api_key:
            raise ConfigurationError("OPENROUTER_API_KEY environment variable not found")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.text_model = text_model
        self.log_path = log_path
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, settings) -> "OpenRouterClient":
        return cls(
            settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            text_model=settings.text_model,
            log_path=settings.llm_log_path,
        )

    async def __aenter__(self) -> "OpenRouterClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # Callers bound each request with their own time limit
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
            self._owns_session = True
        return self._session

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = self._get_session()
        async with session.post(
            f"{self.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            data=json.dumps(payload),
        ) as response:
            try:
                full_response = await response.json(content_type=None)
            except json.JSONDecodeError:
                response_text = await response.text()
                if response.status >= 500:
                    raise TransientOverloadError(
                        f"Non-JSON response from API (status {response.status})",
                        {"status": response.status, "body_preview": response_text[:200]},
                    )
                raise MalformedResponseError(
                    f"Non-JSON response from API (status {response.status})",
                    {"status": response.status, "body_preview": response_text[:200]},
                )
            _raise_for_error(response.status, full_response)
            return full_response

    def _log_call(self, start_time: datetime, messages, full_response: Dict[str, Any], caller: str, text: str) -> None:
        if not self.log_path:
            return
        usage = full_response.get('usage') or {}
        tokens_in = usage.get('prompt_tokens') or _count_tokens_in_messages(messages)
        tokens_out = usage.get('completion_tokens', 0)
        prompt_preview = text[:20] + "..." if len(text) > 20 else text
        try:
            _log_llm_call(self.log_path, start_time, datetime.now(), tokens_in, tokens_out, caller, prompt_preview)
        except OSError as e:
            logger.warning(f"Could not write LLM call log to {self.log_path}: {e}")

    async def generate_text(
        self,
        text: str,
        *,
        context: Optional[Union[str, List[Dict[str, Any]]]] = None,
        response_format: Optional[Type[BaseModel]] = None,
        model: Optional[str] = None,
        reasoning_effort: Optional[ReasoningEffort] = None,
        caller: str = "text",
    ) -> Union[str, BaseModel]:
        """Run a text generation call.

        Args:
            text: The main text prompt
            context: Optional system message (string) or message history
            response_format: Optional Pydantic model class for structured output
            model: Model override, defaults to the client's text model
            reasoning_effort: "minimal" | "low" | "medium" | "high", or None to omit
            caller: Label written to the call log

        Returns:
            The response text, or a validated instance of ``response_format``
        """
        start_time = datetime.now()
        messages = _build_messages(context, text)
        payload = _build_payload(model or self.text_model, messages, reasoning_effort, response_format)

        full_response = await self._post(payload)
        _check_finish_reason(full_response)
        result = _parse_structured_response(_extract_message_content(full_response), response_format)

        self._log_call(start_time, messages, full_response, caller, text)
        return result

    async def generate_image(
        self,
        text: str,
        *,
        model: str,
        aspect_ratio: str = "3:4",
        context: Optional[str] = None,
        caller: str = "image",
    ) -> ImagePayload:
        """Render a prompt into an image.

        Args:
            text: The rendering prompt
            model: Image model identifier
            aspect_ratio: Requested aspect ratio (e.g. "3:4")
            context: Optional system message
            caller: Label written to the call log

        Returns:
            The decoded image payload
        """
        start_time = datetime.now()
        messages = _build_messages(context, text)
        payload = _build_payload(model, messages, None, aspect_ratio=aspect_ratio)

        full_response = await self._post(payload)
        _check_finish_reason(full_response)
        image = _process_image_response(full_response)

        self._log_call(start_time, messages, full_response, caller, text)
        return image
