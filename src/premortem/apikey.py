"""Anthropic API key validation."""

import anthropic
import structlog

log = structlog.get_logger()

VALIDATION_MODEL = "claude-3-haiku-20240307"


class ApiKeyValidationError(Exception):
    """The configured API key was rejected or could not be checked."""


async def validate_api_key(api_key: str | None) -> None:
    """Make a minimal API call to confirm the key works.

    Raises:
        ApiKeyValidationError: If the key is empty, rejected (401), or the
            API is unavailable (503). Other API errors propagate unchanged.
    """
    if api_key is None or not api_key.strip():
        raise ApiKeyValidationError("API key cannot be empty. Please check your configuration.")

    client = anthropic.AsyncAnthropic(api_key=api_key)
    try:
        await client.messages.create(
            model=VALIDATION_MODEL,
            max_tokens=1,
            messages=[{"role": "user", "content": "test"}],
        )
    except anthropic.APIStatusError as e:
        if e.status_code == 401:
            raise ApiKeyValidationError(
                "Invalid Anthropic API key. Please check your configuration."
            ) from e
        if e.status_code == 503:
            raise ApiKeyValidationError(
                "Anthropic API is currently unavailable. Please try again later."
            ) from e
        raise

    log.info("api_key_validated")
