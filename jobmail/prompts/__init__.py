"""Prompt rendering for text generation models using Jinja2.

Prompts live as plain-text templates in ``jobmail/prompts/templates`` and are
rendered with strict undefined checking, so a missing variable fails loudly
instead of sending a half-empty prompt.
"""

import logging
from typing import Any

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError

logger = logging.getLogger(__name__)

DESCRIPTION_TEMPLATE = "describe_posting.txt.j2"
SALARY_TEMPLATE = "extract_salary.txt.j2"
CLASSIFY_TEMPLATE = "classify_message.txt.j2"


class PromptTemplateError(Exception):
    """Raised when a prompt template is missing or fails to render."""

    pass


class PromptRenderer:
    """Renders prompt templates; compiled templates are cached by Jinja2."""

    def __init__(self, template_dir: str = "templates"):
        self.env = Environment(
            loader=PackageLoader("jobmail.prompts", template_dir),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=False,
        )

    def render(self, template_name: str, **context: Any) -> str:
        """Render ``template_name`` with ``context``.

        Raises:
            PromptTemplateError: If the template is missing or a variable is undefined
        """
        try:
            return self.env.get_template(template_name).render(**context).strip()
        except TemplateError as e:
            error_msg = f"Prompt rendering failed for {template_name}: {e}"
            logger.error(error_msg, exc_info=True)
            raise PromptTemplateError(error_msg) from e


_default_renderer = None


def render_prompt(template_name: str, **context: Any) -> str:
    """Render a prompt with a shared renderer."""
    global _default_renderer
    if _default_renderer is None:
        _default_renderer = PromptRenderer()
    return _default_renderer.render(template_name, **context)


__all__ = [
    "PromptRenderer",
    "PromptTemplateError",
    "render_prompt",
    "DESCRIPTION_TEMPLATE",
    "SALARY_TEMPLATE",
    "CLASSIFY_TEMPLATE",
]
