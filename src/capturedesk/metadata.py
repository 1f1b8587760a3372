"""Applying template metadata to captures."""

from __future__ import annotations

from collections.abc import Mapping

import structlog

from .models import CaptureMetadata, MetadataTemplate, ScreenCapture
from .storage.templates import TemplateStore

log = structlog.get_logger()


class MetadataService:
    def __init__(self, templates: TemplateStore) -> None:
        self.templates = templates

    def apply_template(
        self, capture: ScreenCapture, template_id: str, values: Mapping[str, str]
    ) -> CaptureMetadata:
        """Replace the capture's structured metadata wholesale and count the usage."""
        template = self.templates.get(template_id)
        if template is None:
            raise KeyError(f"Template {template_id} not found")

        self.templates.record_usage(template_id)
        metadata = CaptureMetadata(
            template_id=template.id,
            template_name=template.name,
            values=dict(values),
        )
        capture.template_metadata = metadata
        log.info("metadata_applied", capture_id=capture.id, template=template.name)
        return metadata

    def validate_values(self, template_id: str, values: Mapping[str, str]) -> list[str]:
        template = self.templates.get(template_id)
        if template is None:
            return ["Template not found"]
        return [
            f"{f.label} is required"
            for f in sorted(template.fields, key=lambda f: f.display_order)
            if f.is_required and not (values.get(f.name) or "").strip()
        ]

    @staticmethod
    def default_values(template: MetadataTemplate) -> dict[str, str]:
        return {f.name: f.default_value for f in template.fields if f.default_value is not None}

    # Legacy free-form key/value map

    @staticmethod
    def set_field(capture: ScreenCapture, key: str, value: str) -> None:
        if not key.strip():
            raise ValueError("Metadata key must not be empty")
        capture.metadata[key] = value

    @staticmethod
    def remove_field(capture: ScreenCapture, key: str) -> bool:
        return capture.metadata.pop(key, None) is not None
