# File: src/rolemailer/infrastructure/render/templates.py
"""
Jinja2 renderer for message bodies. Templates are HTML files looked up by
`template_id` (a path relative to the template directory).
"""

import logging
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, TemplateNotFound, select_autoescape

from rolemailer.domain.errors import RenderError

log = logging.getLogger(__name__)


class JinjaTemplateRenderer:
    def __init__(self, template_directory: str, environment: Optional[Environment] = None):
        self.template_directory = template_directory
        self._environment = environment

    @property
    def environment(self) -> Environment:
        # Built on first use so a missing directory only matters when rendering.
        if self._environment is None:
            self._environment = Environment(
                loader=FileSystemLoader(self.template_directory),
                autoescape=select_autoescape(["html", "htm", "xml"]),
                undefined=StrictUndefined,
            )
        return self._environment

    def render(self, template_id: str, parameters: Dict[str, Any]) -> str:
        try:
            return self.environment.get_template(template_id).render(**parameters)
        except TemplateNotFound as e:
            raise RenderError(template_id, f"template not found: {e.name}") from e
        except TemplateError as e:
            raise RenderError(template_id, str(e)) from e
