"""Jinja2-based prompt template loader for the chat assistant.

This service loads prompt templates from the backend/prompts/ directory and renders
them with context variables. It supports hot-reload (no caching) so prompts can be
edited without restarting the server.

Fallback inline prompts are provided for when the prompts directory is not
shipped alongside the code.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import jinja2

logger = logging.getLogger(__name__)

# backend/src/services/prompt_loader.py -> backend/prompts/
DEFAULT_PROMPTS_DIR = Path(__file__).resolve().parent.parent.parent / "prompts"

_INLINE_CONTEXT = """{% if route or team_name or context_notes %}

## Current context
{% if route %}- The user is currently viewing: {{ route }}
{% endif %}{% if team_name %}- Workspace: team "{{ team_name }}"
{% else %}- Workspace: personal
{% endif %}{% if context_notes %}
### Context notes
{% for note in context_notes %}
#### {{ note.title }} (id: {{ note.id }})
{{ note.content }}
{% endfor %}{% endif %}{% endif %}
"""

INLINE_PROMPTS: Dict[str, str] = {
    "chat/context.md": _INLINE_CONTEXT,
    "chat/agent.md": """You are TaskNotes AI, an assistant inside the TaskNotes workspace.
You may call tools in a loop after each user message; reply without a tool call to finish.
Search the user's notes and tasks before answering whenever their own data could change the answer.
If a tool result contains an `error`, tell the user briefly and carry on.
Cite notes you used by title. Never invent note content or task details.
{% include "chat/context.md" %}""",
    "chat/ask.md": """You are TaskNotes AI, an assistant inside the TaskNotes workspace.
You are in ask mode and have no tools. Answer from the conversation and the context below.
If you would need more information, say so and suggest agent mode.
{% include "chat/context.md" %}""",
}


class PromptLoaderError(Exception):
    """Raised when a prompt cannot be loaded."""

    pass


class PromptLoader:
    """Load and render Jinja2 prompt templates.

    Supports:
    - Loading templates from filesystem (backend/prompts/)
    - Fallback to inline prompts when a template is missing on disk
    - Hot-reload: templates are reloaded on every call (no caching)

    Example:
        >>> loader = PromptLoader()
        >>> system_prompt = loader.load("chat/agent.md", {"route": "/notes/42"})
    """

    def __init__(self, prompts_dir: Optional[Path] = None) -> None:
        self.prompts_dir = prompts_dir or DEFAULT_PROMPTS_DIR

        if self.prompts_dir.is_dir():
            self.env = jinja2.Environment(
                loader=jinja2.FileSystemLoader(str(self.prompts_dir)),
                autoescape=False,  # Prompts are markdown, not HTML
                auto_reload=True,
                keep_trailing_newline=True,
                trim_blocks=True,
                lstrip_blocks=True,
            )
            logger.debug(
                "PromptLoader initialized with filesystem templates",
                extra={"prompts_dir": str(self.prompts_dir)},
            )
        else:
            self.env = None
            logger.warning(
                "Prompts directory not found, using inline fallbacks",
                extra={"prompts_dir": str(self.prompts_dir)},
            )

        self._inline_env = jinja2.Environment(
            loader=jinja2.DictLoader(INLINE_PROMPTS),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def load(self, path: str, context: Optional[Dict[str, Any]] = None) -> str:
        """Load and render a prompt template.

        Raises:
            PromptLoaderError: If the template cannot be loaded or rendered.
        """
        context = context or {}

        if self.env is not None:
            try:
                template = self.env.get_template(path)
                rendered = template.render(**context)
                logger.debug(
                    "Loaded prompt from filesystem",
                    extra={"path": path, "context_keys": list(context.keys())},
                )
                return rendered
            except jinja2.TemplateNotFound:
                logger.debug(
                    "Template not found in filesystem, trying inline fallback",
                    extra={"path": path},
                )
            except jinja2.TemplateError as e:
                logger.error(
                    "Failed to render template",
                    extra={"path": path, "error": str(e)},
                )
                raise PromptLoaderError(f"Failed to render template {path}: {e}") from e

        return self._get_inline_prompt(path, context)

    def _get_inline_prompt(self, path: str, context: Dict[str, Any]) -> str:
        if path not in INLINE_PROMPTS:
            logger.warning(
                "No inline fallback for prompt path",
                extra={"path": path, "available": list(INLINE_PROMPTS.keys())},
            )
            raise PromptLoaderError(
                f"Prompt not found: {path}. "
                f"Available inline prompts: {list(INLINE_PROMPTS.keys())}"
            )

        try:
            return self._inline_env.get_template(path).render(**context)
        except jinja2.TemplateError as e:
            logger.error(
                "Failed to render inline template",
                extra={"path": path, "error": str(e)},
            )
            raise PromptLoaderError(
                f"Failed to render inline template {path}: {e}"
            ) from e

    def list_available(self) -> Dict[str, list[str]]:
        """List available prompt templates by origin."""
        result: Dict[str, list[str]] = {
            "filesystem": [],
            "inline": sorted(INLINE_PROMPTS),
        }

        if self.prompts_dir.is_dir():
            for md_file in self.prompts_dir.rglob("*.md"):
                result["filesystem"].append(md_file.relative_to(self.prompts_dir).as_posix())

        return result


__all__ = ["PromptLoader", "PromptLoaderError", "DEFAULT_PROMPTS_DIR", "INLINE_PROMPTS"]
