"""Provider-specific request options built from a generation preset.

Each provider family encodes "reasoning effort" differently. The encoding is
looked up from ``REASONING_STRATEGIES`` keyed by provider kind, so adding a
provider means adding one entry rather than another branch.

Option keys use the names the LangChain integrations and provider request
bodies expect:

* openrouter: ``{"reasoning": {"effort": "high"}, "provider": {"only": [...]}}``
* openai:     ``{"reasoning_effort": "high"}``
* anthropic:  ``{"thinking": {"type": "enabled", "budget_tokens": 16000}}``
* google:     no reasoning options
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

from storyloom.observability.logging import get_logger
from storyloom.settings.models import GenerationPreset, ProviderKind, ReasoningEffort

log = get_logger(__name__)

# Keys that would change the request shape rather than tune sampling
MANUAL_BODY_DENYLIST = frozenset({"messages", "tools", "tool_choice", "stream", "model"})

THINKING_BUDGETS: dict[ReasoningEffort, int] = {
    ReasoningEffort.OFF: 0,
    ReasoningEffort.LOW: 4000,
    ReasoningEffort.MEDIUM: 8000,
    ReasoningEffort.HIGH: 16000,
}
DEFAULT_THINKING_BUDGET = THINKING_BUDGETS[ReasoningEffort.MEDIUM]

ReasoningStrategy = Callable[[dict[str, Any], ReasoningEffort], None]


def effort_to_budget(effort: ReasoningEffort | str) -> int:
    """Convert a reasoning effort label to a thinking token budget.

    Unrecognized labels get the medium budget.
    """
    try:
        return THINKING_BUDGETS[ReasoningEffort(effort)]
    except ValueError:
        return DEFAULT_THINKING_BUDGET


def _openrouter_reasoning(options: dict[str, Any], effort: ReasoningEffort) -> None:
    options["reasoning"] = {"effort": effort.value}


def _openai_reasoning(options: dict[str, Any], effort: ReasoningEffort) -> None:
    options["reasoning_effort"] = effort.value


def _anthropic_reasoning(options: dict[str, Any], effort: ReasoningEffort) -> None:
    options["thinking"] = {"type": "enabled", "budget_tokens": effort_to_budget(effort)}


def _no_reasoning(options: dict[str, Any], effort: ReasoningEffort) -> None:  # noqa: ARG001
    # Provider has no reasoning knob; the setting is ignored.
    return


REASONING_STRATEGIES: dict[ProviderKind, ReasoningStrategy] = {
    ProviderKind.OPENROUTER: _openrouter_reasoning,
    ProviderKind.OPENAI: _openai_reasoning,
    ProviderKind.ANTHROPIC: _anthropic_reasoning,
    ProviderKind.GOOGLE: _no_reasoning,
}


def parse_manual_body(manual_body: str) -> dict[str, Any]:
    """Parse a manual request-body override, dropping denylisted keys.

    Malformed JSON and non-object values are logged and treated as empty.

    Args:
        manual_body: JSON object text from the preset.

    Returns:
        Override mapping safe to merge into the request options.
    """
    if not manual_body or not manual_body.strip():
        return {}

    try:
        manual = json.loads(manual_body)
    except json.JSONDecodeError as e:
        log.warning("provider_options_manual_body_invalid", error=str(e))
        return {}

    if not isinstance(manual, dict):
        log.warning(
            "provider_options_manual_body_invalid",
            error=f"expected a JSON object, got {type(manual).__name__}",
        )
        return {}

    dropped = sorted(k for k in manual if k in MANUAL_BODY_DENYLIST)
    if dropped:
        log.debug("provider_options_manual_keys_dropped", keys=dropped)
    return {k: v for k, v in manual.items() if k not in MANUAL_BODY_DENYLIST}


def build_provider_options(
    preset: GenerationPreset,
    provider_kind: ProviderKind | str,
) -> dict[str, Any] | None:
    """Build provider-specific request options from preset settings.

    Args:
        preset: Generation preset carrying reasoning, routing and override settings.
        provider_kind: Provider family of the profile the preset resolves to.

    Returns:
        Options mapping, or None when there is nothing to send.

    Raises:
        ValueError: If provider_kind is not a known provider family.
    """
    kind = ProviderKind(provider_kind)
    options: dict[str, Any] = {}

    effort = ReasoningEffort(preset.reasoning_effort or ReasoningEffort.OFF)
    if effort is not ReasoningEffort.OFF:
        REASONING_STRATEGIES[kind](options, effort)

    if kind is ProviderKind.OPENROUTER and preset.provider_only:
        options["provider"] = {"only": list(preset.provider_only)}

    options.update(parse_manual_body(preset.manual_body))

    if not options:
        return None
    return options
