"""
Prompt loader for the versioned YAML prompt set.

Prompts live under a version directory, one YAML mapping per domain:

    v1/
    ├── story/     # Storyline, characters, description rewrite, script, presence
    └── imaging/   # Portraits, backgrounds, compositing, edits, covers

Usage:
    from app.prompts.loader import get_prompt, render_prompt

    template = get_prompt("prompt_storyline")
    rendered = render_prompt("prompt_storyline", seed_text="...")
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, StrictUndefined

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).resolve().parent
_VERSION = "v1"

_DOMAIN_DIRS = [
    "story",
    "imaging",
]


@lru_cache(maxsize=1)
def _jinja_env() -> Environment:
    """Create Jinja2 environment for prompt rendering."""
    return Environment(
        undefined=StrictUndefined,
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
    )


@lru_cache(maxsize=1)
def _load_prompts() -> dict[str, Any]:
    """Load prompts from the versioned directory structure.

    Template syntax errors raise immediately rather than being skipped.
    """
    prompts: dict[str, Any] = {}
    version_dir = _PROMPTS_DIR / _VERSION

    for domain in _DOMAIN_DIRS:
        domain_dir = version_dir / domain
        if not domain_dir.exists():
            continue

        for yaml_file in sorted(domain_dir.glob("*.yaml")):
            with yaml_file.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            if not isinstance(data, dict):
                logger.warning("Skipping %s: top level is not a mapping", yaml_file)
                continue

            for key, value in data.items():
                template = value.get("template") if isinstance(value, dict) else value
                if isinstance(template, str):
                    try:
                        _jinja_env().parse(template)
                    except Exception as e:  # TemplateSyntaxError or others
                        raise ValueError(f"Invalid Jinja2 template in {yaml_file}:{key}: {e}") from e

            prompts.update(data)

    return prompts


def get_prompt(name: str) -> str:
    """
    Get a prompt template by name.

    Supports both `{name: "template"}` and `{name: {template: "..."}}` shapes.

    Raises:
        KeyError: If prompt not found or not a string
    """
    value = _load_prompts().get(name)
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and "template" in value:
        return value["template"]
    raise KeyError(f"Prompt '{name}' not found or not a string")


def render_prompt(name: str, **context: Any) -> str:
    """Render a prompt template with the given context.

    Missing variables raise `jinja2.UndefinedError`.
    """
    template = get_prompt(name)
    return _jinja_env().from_string(template).render(**context).strip()


def list_prompts(domain: str | None = None) -> list[str]:
    """List available prompt names, optionally for a single domain."""
    if domain is None:
        return list(_load_prompts().keys())

    domain_dir = _PROMPTS_DIR / _VERSION / domain
    if not domain_dir.exists():
        return []

    names: list[str] = []
    for yaml_file in sorted(domain_dir.glob("*.yaml")):
        with yaml_file.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if isinstance(data, dict):
            names.extend(data.keys())
    return names


def clear_cache() -> None:
    """Clear all cached prompts (useful for hot-reload scenarios)."""
    _load_prompts.cache_clear()
    _jinja_env.cache_clear()
