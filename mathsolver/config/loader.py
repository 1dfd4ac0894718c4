import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from mathsolver.schemas import ProviderKind, ProviderSeed

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-(.*?))?\}")

DEFAULT_SEEDS: list[ProviderSeed] = [
    ProviderSeed(
        kind=ProviderKind.OPENAI,
        display_name="OpenAI ChatGPT",
        selected_model="gpt-4o-mini",
        available_models=["gpt-4o-mini"],
        api_endpoint="https://api.openai.com/v1/chat/completions",
    ),
    ProviderSeed(
        kind=ProviderKind.GEMINI,
        display_name="Google Gemini",
        selected_model="gemini-1.5-flash",
        available_models=["gemini-2.0-flash-exp", "gemini-1.5-flash", "gemini-1.5-pro"],
        api_endpoint="https://generativelanguage.googleapis.com/v1beta/models",
    ),
    ProviderSeed(
        kind=ProviderKind.CLAUDE,
        display_name="Anthropic Claude",
        selected_model="claude-3-5-sonnet-20240620",
        available_models=[
            "claude-3-5-sonnet-20240620",
            "claude-3-haiku-20240307",
            "claude-3-opus-20240229",
        ],
        api_endpoint="https://api.anthropic.com/v1/messages",
    ),
]


def _substitute_env_vars(value: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        return default if default is not None else ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _substitute_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _substitute_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_recursive(item) for item in obj]
    return obj


def _drop_unset_tokens(entry: dict[str, Any]) -> dict[str, Any]:
    tokens = entry.get("tokens")
    if not isinstance(tokens, list):
        return entry
    kept = [t for t in tokens if isinstance(t, dict) and str(t.get("key") or "").strip()]
    if len(kept) < len(tokens):
        logger.info(
            "Skipping %d token(s) with empty key for provider %s",
            len(tokens) - len(kept),
            entry.get("kind"),
        )
    return {**entry, "tokens": kept}


def load_provider_seeds(config_path: str | None = None) -> list[ProviderSeed] | None:
    if not config_path:
        return None

    path = Path(config_path)
    if not path.is_file():
        logger.warning("Provider config file not found: %s", config_path)
        return None

    try:
        raw = path.read_text(encoding="utf-8")
        data = yaml.safe_load(raw)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to load provider config from %s: %s", config_path, e)
        return None

    if not isinstance(data, dict) or "providers" not in data:
        logger.warning("Provider config missing 'providers' key: %s", config_path)
        return None

    raw_providers = data["providers"]
    if not isinstance(raw_providers, list) or not raw_providers:
        logger.warning("Provider config 'providers' is empty or not a list: %s", config_path)
        return None

    seeds: list[ProviderSeed] = []
    seen: set[ProviderKind] = set()
    for i, entry in enumerate(raw_providers):
        entry = _substitute_recursive(entry)
        if isinstance(entry, dict):
            entry = _drop_unset_tokens(entry)
        try:
            seed = ProviderSeed.model_validate(entry)
        except ValidationError as e:
            logger.warning("Skipping invalid provider entry %d in %s: %s", i, config_path, e)
            continue
        if seed.kind in seen:
            logger.warning("Skipping duplicate provider %s in %s", seed.kind, config_path)
            continue
        seen.add(seed.kind)
        seeds.append(seed)

    if not seeds:
        logger.warning("No valid providers loaded from %s", config_path)
        return None

    logger.info("Loaded %d provider(s) from YAML config: %s", len(seeds), config_path)
    return seeds


def get_provider_seeds(config_path: str | None = None) -> list[ProviderSeed]:
    return load_provider_seeds(config_path) or [s.model_copy(deep=True) for s in DEFAULT_SEEDS]
