# prompt_renderer.py
"""Utilities for rendering LLM prompts using Jinja2 templates."""

import json
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader
from pydantic import BaseModel

PROMPTS_PATH = Path(__file__).parent / "prompts"
_env = Environment(
    loader=FileSystemLoader(PROMPTS_PATH),
    autoescape=False,
    keep_trailing_newline=False,
    trim_blocks=True,
    lstrip_blocks=True,
)


def _default_json_serializer(value: Any) -> Any:
    """Serialize pydantic models for JSON output."""
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_none=True)
    raise TypeError(
        f"Object of type {value.__class__.__name__} is not JSON serializable"
    )


def _tojson(value: Any, indent: int | None = None) -> str:
    """JSON filter that supports pydantic models and keeps CJK text readable."""
    return json.dumps(
        value, default=_default_json_serializer, ensure_ascii=False, indent=indent
    )


def _truncate_chars(value: str, limit: int, marker: str = "...") -> str:
    if value is None:
        return ""
    text = str(value)
    return text if len(text) <= limit else text[:limit] + marker


_env.filters["tojson"] = _tojson
_env.filters["truncate_chars"] = _truncate_chars


def render_prompt(template_name: str, context: dict[str, Any]) -> str:
    """Render a Jinja2 template from the prompts directory."""
    template = _env.get_template(template_name)
    return template.render(**context).strip()
