"""Metadata templates: three built-ins in memory plus user templates on disk."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import structlog

from ..models import MetadataField, MetadataFieldType, MetadataTemplate, new_id, utcnow
from .codec import template_from_dict, template_to_dict

log = structlog.get_logger()

UI_DOCUMENTATION_ID = "00000000-0000-0000-0000-000000000001"
RECEIPT_TRACKING_ID = "00000000-0000-0000-0000-000000000002"
CODE_DOCUMENTATION_ID = "00000000-0000-0000-0000-000000000003"

TemplateObserver = Callable[[str, MetadataTemplate], None]

T = MetadataFieldType


class TemplateError(ValueError):
    """Raised when an operation would modify a built-in template."""


def _field(name: str, label: str, field_type: MetadataFieldType, order: int, **kw) -> MetadataField:
    return MetadataField(name=name, label=label, field_type=field_type, display_order=order, **kw)


def builtin_templates() -> list[MetadataTemplate]:
    """Fresh copies of the shipped templates (never written to disk)."""
    ui = MetadataTemplate(
        id=UI_DOCUMENTATION_ID,
        name="UI Documentation",
        description=(
            "Document user interface elements with structured metadata "
            "for design systems and component libraries"
        ),
        category="Development",
        is_built_in=True,
        fields=[
            _field(
                "ElementType", "Element Type", T.DROPDOWN, 1, is_required=True,
                dropdown_options=[
                    "Button", "Input", "Dropdown", "Modal", "Menu",
                    "Card", "Form", "Navigation", "Icon", "Other",
                ],
                help_text="Type of UI component",
            ),
            _field(
                "ComponentName", "Component Name", T.TEXT, 2, is_required=True,
                placeholder="e.g., LoginButton, SearchInput",
                help_text="Unique identifier for this component",
            ),
            _field(
                "PageLocation", "Page/Screen", T.TEXT, 3,
                placeholder="e.g., Dashboard, Settings",
                help_text="Where this element appears",
            ),
            _field(
                "State", "State", T.DROPDOWN, 4,
                dropdown_options=["Default", "Hover", "Active", "Disabled", "Error", "Loading"],
                default_value="Default",
            ),
            _field(
                "VisibleText", "Visible Text", T.TEXT, 5,
                placeholder="Text displayed on element",
                help_text="User-visible label or content",
            ),
            _field(
                "Notes", "Notes", T.MULTILINE_TEXT, 6,
                placeholder="Additional documentation or implementation notes",
            ),
        ],
    )

    receipt = MetadataTemplate(
        id=RECEIPT_TRACKING_ID,
        name="Receipt Tracking",
        description="Track receipts and invoices for expense management and tax reporting",
        category="Finance",
        is_built_in=True,
        fields=[
            _field(
                "Vendor", "Vendor/Store", T.TEXT, 1, is_required=True,
                placeholder="e.g., Amazon, Walmart", help_text="Business or store name",
            ),
            _field("Date", "Transaction Date", T.DATE, 2, is_required=True, help_text="Date of purchase"),
            _field(
                "Amount", "Total Amount", T.CURRENCY, 3, is_required=True,
                placeholder="0.00", help_text="Total transaction amount",
            ),
            _field(
                "Category", "Expense Category", T.DROPDOWN, 4, is_required=True,
                dropdown_options=[
                    "Office Supplies", "Travel", "Meals", "Equipment",
                    "Software", "Utilities", "Other",
                ],
            ),
            _field(
                "PaymentMethod", "Payment Method", T.DROPDOWN, 5,
                dropdown_options=[
                    "Credit Card", "Debit Card", "Cash", "Check",
                    "Bank Transfer", "PayPal", "Other",
                ],
            ),
            _field(
                "ReceiptNumber", "Receipt/Invoice Number", T.TEXT, 6,
                placeholder="Transaction or invoice ID",
            ),
            _field(
                "TaxDeductible", "Tax Deductible", T.CHECKBOX, 7, default_value="false",
                help_text="Can this be claimed as business expense?",
            ),
            _field(
                "Notes", "Notes", T.MULTILINE_TEXT, 8,
                placeholder="Purpose, attendees, or additional details",
            ),
        ],
    )

    code = MetadataTemplate(
        id=CODE_DOCUMENTATION_ID,
        name="Code Documentation",
        description=(
            "Document code snippets, functions, and implementations "
            "for knowledge bases and tutorials"
        ),
        category="Development",
        is_built_in=True,
        fields=[
            _field(
                "Language", "Programming Language", T.DROPDOWN, 1, is_required=True,
                dropdown_options=[
                    "C#", "Python", "JavaScript", "TypeScript", "Java",
                    "C++", "Go", "Rust", "SQL", "Other",
                ],
            ),
            _field(
                "CodeType", "Code Type", T.DROPDOWN, 2, is_required=True,
                dropdown_options=[
                    "Function", "Class", "Method", "API Endpoint",
                    "Configuration", "Query", "Script", "Snippet",
                ],
            ),
            _field(
                "FunctionName", "Function/Class Name", T.TEXT, 3,
                placeholder="e.g., CalculateTotal, UserService",
                help_text="Name of function, class, or endpoint",
            ),
            _field(
                "Purpose", "Purpose", T.MULTILINE_TEXT, 4, is_required=True,
                placeholder="What does this code do?",
                help_text="Brief description of functionality",
            ),
            _field(
                "Parameters", "Parameters/Arguments", T.MULTILINE_TEXT, 5,
                placeholder="List input parameters and their types",
            ),
            _field("ReturnValue", "Return Value", T.TEXT, 6, placeholder="What does it return?"),
            _field("SourceFile", "Source File", T.TEXT, 7, placeholder="e.g., UserController.cs, utils.py"),
            _field(
                "Tags", "Tags", T.MULTI_SELECT, 8,
                dropdown_options=[
                    "Authentication", "Database", "API", "Utility",
                    "Algorithm", "UI", "Testing", "Performance",
                ],
                help_text="Categorize this code snippet",
            ),
            _field(
                "Notes", "Additional Notes", T.MULTILINE_TEXT, 9,
                placeholder="Implementation details, gotchas, or examples",
            ),
        ],
    )
    return [ui, receipt, code]


class TemplateStore:
    """Built-in templates followed by user templates from ``<data_dir>/templates/*.json``."""

    def __init__(self, data_dir: str | Path) -> None:
        self.templates_dir = Path(data_dir) / "templates"
        self.templates_dir.mkdir(parents=True, exist_ok=True)
        self._templates: list[MetadataTemplate] = []
        self._observers: list[TemplateObserver] = []
        self.reload()

    @property
    def templates(self) -> list[MetadataTemplate]:
        return list(self._templates)

    def reload(self) -> None:
        self._templates = builtin_templates()
        for path in sorted(self.templates_dir.glob("*.json")):
            try:
                template = template_from_dict(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError, TypeError) as e:
                log.warning("template_unreadable", path=str(path), error=str(e))
                continue
            if not template.is_built_in:
                self._templates.append(template)
        log.debug("templates_loaded", count=len(self._templates))

    def subscribe(self, callback: TemplateObserver) -> None:
        self._observers.append(callback)

    def _notify(self, event: str, template: MetadataTemplate) -> None:
        for callback in list(self._observers):
            try:
                callback(event, template)
            except Exception as e:
                log.error("template_observer_error", event_name=event, error=str(e))

    # -- Lookup --

    def get(self, template_id: str) -> MetadataTemplate | None:
        return next((t for t in self._templates if t.id == template_id), None)

    def get_by_name(self, name: str) -> MetadataTemplate | None:
        wanted = name.lower()
        return next((t for t in self._templates if t.name.lower() == wanted), None)

    def by_category(self, category: str) -> list[MetadataTemplate]:
        wanted = category.lower()
        return [t for t in self._templates if t.category.lower() == wanted]

    def categories(self) -> list[str]:
        return sorted({t.category for t in self._templates})

    # -- Mutation --

    def create(self, name: str, description: str = "", category: str = "") -> MetadataTemplate:
        template = MetadataTemplate(name=name, description=description, category=category)
        self._templates.append(template)
        self._write(template)
        log.info("template_created", template_id=template.id, name=name)
        self._notify("template_created", template)
        return template

    def update(self, template: MetadataTemplate) -> None:
        if template.is_built_in:
            raise TemplateError("Cannot modify built-in templates. Create a copy instead.")
        template.modified_at = utcnow()
        if self.get(template.id) is None:
            self._templates.append(template)
        self._write(template)
        self._notify("template_updated", template)

    def delete(self, template_id: str) -> bool:
        template = self.get(template_id)
        if template is None:
            return False
        if template.is_built_in:
            raise TemplateError("Cannot delete built-in templates.")
        self._templates.remove(template)
        self._path(template.id).unlink(missing_ok=True)
        log.info("template_deleted", template_id=template.id)
        self._notify("template_deleted", template)
        return True

    def duplicate(self, template_id: str) -> MetadataTemplate:
        source = self.get(template_id)
        if source is None:
            raise KeyError(f"Template not found: {template_id}")
        copy = source.clone()
        self._templates.append(copy)
        self._write(copy)
        self._notify("template_created", copy)
        return copy

    def record_usage(self, template_id: str) -> None:
        template = self.get(template_id)
        if template is None:
            return
        template.usage_count += 1
        if not template.is_built_in:
            self._write(template)

    @staticmethod
    def validate(template: MetadataTemplate) -> list[str]:
        return template.validate()

    # -- Import / export --

    def export_template(self, template_id: str, path: str | Path) -> Path:
        template = self.get(template_id)
        if template is None:
            raise KeyError(f"Template not found: {template_id}")
        path = Path(path)
        path.write_text(json.dumps(template_to_dict(template), indent=2), encoding="utf-8")
        return path

    def import_template(self, path: str | Path) -> MetadataTemplate:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Invalid template file")
        template = template_from_dict(data)
        template.id = new_id()
        template.is_built_in = False
        template.created_at = template.modified_at = utcnow()
        self._templates.append(template)
        self._write(template)
        self._notify("template_created", template)
        return template

    def _path(self, template_id: str) -> Path:
        return self.templates_dir / f"{template_id}.json"

    def _write(self, template: MetadataTemplate) -> None:
        if template.is_built_in:
            return
        self._path(template.id).write_text(
            json.dumps(template_to_dict(template), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
