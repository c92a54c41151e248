"""Built-in style templates for caption exports.

Template ids:
- voxport-pulse-portrait: 9:16 stories / reels
- voxport-pulse-square: 1:1 feed posts
- voxport-pulse-landscape: 16:9 players
"""

from typing import Any

from pydantic import ValidationError

from voxport.exceptions import InvalidStyleError, TemplateNotFoundError
from voxport.schemas.export import (
    BackgroundSpec,
    LayoutSpec,
    StyleTemplate,
    TypographySpec,
)

DEFAULT_TEMPLATE_ID = "voxport-pulse-portrait"

_PULSE_TYPOGRAPHY = TypographySpec(
    font_family="Inter",
    font_size_px=42,
    font_weight=700,
    line_height=1.15,
    text_color="#FFFFFF",
    highlight_color="#7C5DFA",
    muted_color="#A1A1AA",
)


class TemplateService:
    """Catalog of style templates keyed by id."""

    def __init__(self, templates: list[StyleTemplate] | None = None):
        self._templates: dict[str, StyleTemplate] = {}
        for template in templates or _default_templates():
            self._templates[template.id] = template

    def list_templates(self) -> list[StyleTemplate]:
        return list(self._templates.values())

    def get_template(self, template_id: str) -> StyleTemplate:
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    def resolve(
        self,
        template_id: str | None = None,
        inline: StyleTemplate | dict[str, Any] | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> StyleTemplate:
        """Pick the template for a job.

        An inline template wins over a catalog id; with neither, the
        portrait default is used. ``overrides`` is a partial template
        (e.g. ``{"typography": {"highlight_color": "#FF0000"}}``) merged
        over the chosen one.

        Raises:
            TemplateNotFoundError: Unknown catalog id
            InvalidStyleError: Overrides do not produce a valid template
        """
        if inline is not None:
            template = inline if isinstance(inline, StyleTemplate) else StyleTemplate.model_validate(inline)
        else:
            template = self.get_template(template_id or DEFAULT_TEMPLATE_ID)

        if not overrides:
            return template
        try:
            return StyleTemplate.model_validate(_merge(template.model_dump(), overrides))
        except ValidationError as e:
            raise InvalidStyleError(f"Invalid style: {e.error_count()} error(s)") from e


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _default_templates() -> list[StyleTemplate]:
    return [
        StyleTemplate(
            id="voxport-pulse-portrait",
            name="Mobile",
            aspect="portrait",
            highlight_mode="word",
            animation="pop",
            background=BackgroundSpec(type="gradient", colors=("#0A0A0A", "#17112A", "#0A0A0A")),
            typography=_PULSE_TYPOGRAPHY,
            layout=LayoutSpec(max_lines=4, max_chars_per_line=18, padding_px=64),
        ),
        StyleTemplate(
            id="voxport-pulse-square",
            name="Square",
            aspect="square",
            highlight_mode="word",
            animation="pop",
            background=BackgroundSpec(type="gradient", colors=("#0A0A0A", "#1A1A1A", "#0A0A0A")),
            typography=_PULSE_TYPOGRAPHY.model_copy(update={"font_size_px": 36}),
            layout=LayoutSpec(max_lines=4, max_chars_per_line=20, padding_px=56),
        ),
        StyleTemplate(
            id="voxport-pulse-landscape",
            name="Desktop",
            aspect="landscape",
            highlight_mode="word",
            animation="fade",
            background=BackgroundSpec(type="gradient", colors=("#0A0A0A", "#0B1220", "#0A0A0A")),
            typography=_PULSE_TYPOGRAPHY.model_copy(update={"font_size_px": 40}),
            layout=LayoutSpec(max_lines=3, max_chars_per_line=28, padding_px=56),
        ),
    ]
