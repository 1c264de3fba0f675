"""Factory for LangChain chat models built from API profiles.

Uses LangChain's ``init_chat_model`` for unified instantiation. Provider
options produced by ``build_provider_options`` are translated into the
constructor kwargs each LangChain integration understands before the call.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from storyloom.observability.logging import get_logger
from storyloom.providers.base import ProviderConfigError, ProviderError
from storyloom.settings.models import PROVIDER_API_KEY_ENV, APIProfile, ProviderKind

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

log = get_logger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# init_chat_model provider names
_INIT_PROVIDER: dict[ProviderKind, str] = {
    ProviderKind.OPENROUTER: "openai",
    ProviderKind.OPENAI: "openai",
    ProviderKind.ANTHROPIC: "anthropic",
    ProviderKind.GOOGLE: "google_genai",
}

_PACKAGES: dict[ProviderKind, str] = {
    ProviderKind.OPENROUTER: "langchain-openai",
    ProviderKind.OPENAI: "langchain-openai",
    ProviderKind.ANTHROPIC: "langchain-anthropic",
    ProviderKind.GOOGLE: "langchain-google-genai",
}


def create_chat_model(
    profile: APIProfile,
    model: str,
    *,
    temperature: float | None = None,
    max_tokens: int | None = None,
    provider_options: dict[str, Any] | None = None,
) -> BaseChatModel:
    """Create a chat model for a profile.

    Args:
        profile: Profile holding provider kind, credential and endpoint.
        model: Model identifier.
        temperature: Sampling temperature, or None for the provider default.
        max_tokens: Output token limit, or None for the provider default.
        provider_options: Options from ``build_provider_options``.

    Returns:
        Configured BaseChatModel.

    Raises:
        ProviderConfigError: If the profile has no credential.
        ProviderError: If the LangChain integration package is not installed.
    """
    kind = profile.provider_kind
    if not profile.api_key:
        env_var = PROVIDER_API_KEY_ENV[kind]
        log.error("provider_config_error", provider=kind.value, profile=profile.id, missing="api_key")
        raise ProviderConfigError(
            kind.value,
            f"API key required for profile '{profile.id}'. "
            f"Add it to the profile or set {env_var}.",
        )

    kwargs = _provider_kwargs(profile, provider_options or {}, temperature)
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens

    try:
        chat_model = _init_chat_model_safe(_INIT_PROVIDER[kind], model, **kwargs)
    except ImportError as e:
        package = _PACKAGES[kind]
        log.error("provider_import_error", provider=kind.value, package=package)
        raise ProviderError(kind.value, f"{package} not installed. Run: uv add {package}") from e

    log.debug("chat_model_created", provider=kind.value, model=model, profile=profile.id)
    return chat_model


def _init_chat_model_safe(provider: str, model: str, **kwargs: Any) -> BaseChatModel:
    """Call init_chat_model; raises ImportError when the integration is missing."""
    from langchain.chat_models import init_chat_model

    result: BaseChatModel = init_chat_model(model=model, model_provider=provider, **kwargs)
    return result


def _provider_kwargs(
    profile: APIProfile,
    options: dict[str, Any],
    temperature: float | None,
) -> dict[str, Any]:
    """Translate provider options into constructor kwargs for one provider family.

    Args:
        profile: Target profile.
        options: Provider options (not mutated).
        temperature: Requested sampling temperature.

    Returns:
        Constructor kwargs including credential, endpoint and options.
    """
    kind = profile.provider_kind
    options = dict(options)
    kwargs: dict[str, Any] = {"api_key": profile.api_key}
    if temperature is not None:
        kwargs["temperature"] = temperature

    if kind is ProviderKind.OPENROUTER:
        kwargs["base_url"] = profile.base_url or OPENROUTER_BASE_URL
        if options:
            kwargs["extra_body"] = options

    elif kind is ProviderKind.OPENAI:
        if profile.base_url:
            kwargs["base_url"] = profile.base_url
        effort = options.pop("reasoning_effort", None)
        if effort is not None:
            kwargs["reasoning_effort"] = effort
        if options:
            kwargs["extra_body"] = options

    elif kind is ProviderKind.ANTHROPIC:
        if profile.base_url:
            kwargs["base_url"] = profile.base_url
        thinking = options.pop("thinking", None)
        if thinking is not None:
            kwargs["thinking"] = thinking
            # Extended thinking rejects a custom temperature
            if kwargs.pop("temperature", None) is not None:
                log.debug("param_suppressed_by_thinking", param="temperature")
        if options:
            kwargs["model_kwargs"] = options

    elif kind is ProviderKind.GOOGLE:
        if options:
            kwargs["model_kwargs"] = options

    return kwargs
