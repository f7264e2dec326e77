"""Configuration: frozen Config with resolved endpoint and credential."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import os
from typing import Any, Literal

from dotenv import load_dotenv

from courier.errors import ConfigurationError
from courier.retry import RetryPolicy

load_dotenv()

ClientType = Literal["normal", "bedrock", "vertex"]

API_KEY_ENV_VAR = "ANTHROPIC_API_KEY"
BASE_URL_ENV_VAR = "ANTHROPIC_BASE_URL"


@dataclass(frozen=True)
class Config:
    """Immutable configuration for a CourierClient.

    The credential and base URL are auto-resolved from ``ANTHROPIC_API_KEY``
    and ``ANTHROPIC_BASE_URL`` when not passed explicitly.

    Example:
        config = Config(base_url="https://gw.internal/v2/api/claude")
        # Credential is resolved from ANTHROPIC_API_KEY
    """

    #: Auto-resolved from ``ANTHROPIC_API_KEY`` when *None*.
    api_key: str | None = None
    #: Auto-resolved from ``ANTHROPIC_BASE_URL`` when *None*.
    base_url: str | None = None
    extra_headers: dict[str, str] = field(default_factory=dict)
    #: Merged into every SDK request body.
    extra_body: dict[str, Any] = field(default_factory=dict)
    #: Client-type specific parameters (``project``/``location`` for Vertex).
    extra_params: dict[str, str] = field(default_factory=dict)
    client_type: ClientType = "normal"
    disable_cache: bool = False
    #: Caller override for the output budget; the model default applies if *None*.
    max_tokens: int | None = None
    #: Use extended reasoning when the model supports it.
    reasoning: bool = False
    system_prompt_prefix: str | None = None
    #: Log every HTTP request/response made by the SDK transport.
    debug: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    #: Called to re-resolve the credential after a 401.
    credential_resolver: Callable[[], str] | None = None

    def __post_init__(self) -> None:
        """Auto-resolve environment values and validate configuration."""
        if self.client_type not in ("normal", "bedrock", "vertex"):
            raise ConfigurationError(
                f"Unknown client_type: {self.client_type!r}",
                hint="Supported client types: 'normal', 'bedrock', 'vertex'",
            )

        if self.max_tokens is not None and (
            not isinstance(self.max_tokens, int) or self.max_tokens <= 0
        ):
            raise ConfigurationError(
                f"max_tokens must be a positive integer, got {self.max_tokens!r}",
                hint="Pass max_tokens=8192, or leave it unset to use the model default.",
            )

        if self.client_type == "vertex" and not (
            self.extra_params.get("project") and self.extra_params.get("location")
        ):
            raise ConfigurationError(
                "Vertex client requires project and location",
                hint="Pass extra_params={'project': '...', 'location': '...'}.",
            )

        if self.api_key is None:
            object.__setattr__(self, "api_key", os.environ.get(API_KEY_ENV_VAR))
        if self.base_url is None:
            object.__setattr__(self, "base_url", os.environ.get(BASE_URL_ENV_VAR, ""))

    def resolve_credential(self) -> str:
        """Re-resolve the credential, e.g. after the endpoint rejected it.

        Raises:
            ConfigurationError: When no credential can be resolved.
        """
        if self.credential_resolver is not None:
            resolved = self.credential_resolver()
        else:
            resolved = os.environ.get(API_KEY_ENV_VAR) or self.api_key or ""
        if not resolved:
            raise ConfigurationError(
                "Failed to resolve API key",
                hint=f"Set {API_KEY_ENV_VAR} or pass credential_resolver=...",
            )
        return resolved

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(base_url={self.base_url!r}, client_type={self.client_type!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"reasoning={self.reasoning}, disable_cache={self.disable_cache})"
        )

    __repr__ = __str__
