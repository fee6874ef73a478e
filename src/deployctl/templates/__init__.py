"""Jinja2 template rendering for the files deployctl writes to the host.

Built-in templates ship inside the package. An operator can shadow any of
them by placing a file with the same relative name under the configured
``templates_dir`` (``/etc/deployctl/templates`` by default).
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError,
)

from ..errors import PlanningError


@dataclass(slots=True)
class TemplateEngine:
    """Render built-in or operator supplied templates with strict variables."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine that prefers templates found in *override_dir*."""
        loaders = []
        if override_dir is not None and override_dir.is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("deployctl", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name*; any missing variable is a planning error."""
        try:
            template = self.environment.get_template(template_name)
            return template.render(**dict(context))
        except TemplateError as exc:
            raise PlanningError(f"Failed to render template {template_name}: {exc}") from exc


__all__ = ["TemplateEngine"]
