"""CLI entry point for CaptureDesk."""

from __future__ import annotations

import functools
import json
import platform
import sys
from pathlib import Path

import click
import structlog
import yaml

from . import analytics
from .capture.screenshot import ScreenGrabber, save_image
from .config import APP_NAME, Config, app_dir, config_to_dict, load_config, save_config
from .controller import CaptureController
from .export.base import get_exporter
from .metadata import MetadataService
from .models import (
    CaptureMode,
    DisplayMode,
    ExportFormat,
    ExportOptions,
    MetadataTemplate,
    Project,
    Region,
    ScreenCapture,
)
from .processing.ocr import create_engine, load_image
from .reports import REPORT_FORMATS, find_images, run_batch, write_report
from .storage.projects import ProjectStore
from .storage.templates import TemplateStore

log = structlog.get_logger()


def _configure_logging(level: str) -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}.get(level.upper(), 20)
        ),
        # stdout carries command output (json/yaml), logs go to stderr
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )


def _fail(message: str) -> None:
    click.secho(f"✗ {message}", fg="red", err=True)
    sys.exit(1)


def _ok(message: str) -> None:
    click.secho(f"✓ {message}", fg="green")


def _handle_errors(func):
    """Unexpected exceptions end the command with a red error line and exit code 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (click.ClickException, click.exceptions.Exit, SystemExit):
            raise
        except Exception as e:
            log.debug("command_failed", command=func.__name__, error=str(e))
            _fail(f"Error: {e}")

    return wrapper


def _config(ctx: click.Context) -> Config:
    return ctx.obj["config"]


def _store(ctx: click.Context) -> ProjectStore:
    if "store" not in ctx.obj:
        ctx.obj["store"] = ProjectStore(_config(ctx).app.data_path)
    return ctx.obj["store"]


def _require_project(store: ProjectStore, name_or_id: str) -> Project:
    project = store.find_project(name_or_id)
    if project is None:
        _fail(f"Project not found: {name_or_id}")
    return project


@click.group()
@click.option("--config", "-c", "config_path", default=None, help="Config file path")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """CaptureDesk - screen capture and OCR into projects."""
    ctx.ensure_object(dict)
    # warnings only until the configured level is known
    _configure_logging("WARNING")
    try:
        config = load_config(config_path)
    except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
        _fail(f"Invalid configuration: {e}")
    _configure_logging(config.logging.level)
    ctx.obj["config"] = config


# -- capture --


@cli.group()
def capture() -> None:
    """Capture screenshots into a project."""


def _run_capture(
    ctx: click.Context,
    region: Region | None,
    project_name: str | None,
    session_name: str | None,
    output: str | None,
    run_ocr: bool,
) -> None:
    config = _config(ctx)
    grabber = ScreenGrabber()

    if output:
        result = (
            grabber.capture_region(region.x, region.y, region.width, region.height)
            if region
            else grabber.capture_fullscreen()
        )
        if not result.success:
            _fail(f"Capture failed: {result.error}")
        out = Path(output)
        save_image(result.image, out, out.suffix.lstrip(".") or "png", config.capture.jpeg_quality)
        _ok(f"Saved to: {out}")
        return

    store = _store(ctx)
    project = store.find_project(project_name) if project_name else next(
        iter(store.get_all_projects()), None
    )
    if project is None:
        project = store.create_project(project_name or "CLI Captures", "Created via CLI")

    session = None
    if session_name:
        session = store.find_session(project, session_name)
    elif project.sessions:
        session = max(project.sessions, key=lambda s: s.created)
    if session is None:
        session = store.create_session(project, session_name or "CLI Session")

    engine = create_engine(config.ocr) if run_ocr else None
    controller = CaptureController(config, store, engine, grabber)
    controller.select_project(project)
    controller.select_session(session)
    # the flag wins over ocr.auto_process for one-shot captures
    controller.capture_mode = CaptureMode.CAPTURE_AND_OCR if run_ocr else CaptureMode.CAPTURE_ONLY
    if run_ocr:
        controller.start()
    try:
        if region is None:
            captured = controller.capture_fullscreen()
        else:
            captured = controller.capture_region(lambda: region)
        if captured is None:
            _fail(controller.status_text)
        controller.queue.drain()
    finally:
        controller.stop()

    _ok(f"Captured to project '{project.name}' session '{session.name}'")
    click.echo(f"File: {captured.file_path}")
    if captured.ocr_result is not None:
        result = captured.ocr_result
        click.echo(f"OCR: {result.word_count} words ({result.confidence:.0%} confidence)")
        if result.text.strip():
            click.echo(result.text)
    elif run_ocr:
        click.secho(f"! {controller.status_text}", fg="yellow")


_capture_options = [
    click.option("--project", "project_name", default=None, help="Project name or id"),
    click.option("--session", "session_name", default=None, help="Session name or id"),
    click.option("--output", default=None, help="Write the image here instead of a project"),
    click.option("--ocr/--no-ocr", "run_ocr", default=True, show_default=True, help="Run OCR"),
]


def _with_capture_options(func):
    for option in reversed(_capture_options):
        func = option(func)
    return func


@capture.command()
@_with_capture_options
@click.pass_context
@_handle_errors
def fullscreen(ctx, project_name, session_name, output, run_ocr) -> None:
    """Capture the entire (virtual) screen."""
    click.echo("Capturing fullscreen...")
    _run_capture(ctx, None, project_name, session_name, output, run_ocr)


@capture.command()
@click.option("--x", "x", type=int, required=True)
@click.option("--y", "y", type=int, required=True)
@click.option("--width", type=int, required=True)
@click.option("--height", type=int, required=True)
@_with_capture_options
@click.pass_context
@_handle_errors
def region(ctx, x, y, width, height, project_name, session_name, output, run_ocr) -> None:
    """Capture a specific screen region."""
    click.echo(f"Capturing region at ({x}, {y}) size {width}x{height}...")
    _run_capture(ctx, Region(x, y, width, height), project_name, session_name, output, run_ocr)


# -- ocr --


@cli.group()
def ocr() -> None:
    """Run OCR on image files."""


@ocr.command("run")
@click.argument("image", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--format", "fmt", type=click.Choice(["text", "json", "yaml"]), default="text", show_default=True
)
@click.pass_context
@_handle_errors
def ocr_run(ctx: click.Context, image: str, fmt: str) -> None:
    """OCR a single image."""
    engine = create_engine(_config(ctx).ocr)
    result = engine.recognize(load_image(image))
    if not result.text.strip():
        click.secho("! No text detected in image", fg="yellow")
        return

    payload = {
        "file": Path(image).name,
        "text": result.text,
        "confidence": result.confidence,
        "engine": result.engine_name,
        "processing_time_ms": result.processing_time_ms,
    }
    if fmt == "json":
        click.echo(json.dumps(payload, indent=2, ensure_ascii=False))
    elif fmt == "yaml":
        click.echo(yaml.safe_dump(payload, sort_keys=False, allow_unicode=True), nl=False)
    else:
        click.echo(result.text)


@ocr.command("batch")
@click.argument("folder", type=click.Path(exists=True, file_okay=False))
@click.option("--pattern", default="*.png", show_default=True)
@click.option("--export", "export_path", default=None, help="Write a report file")
@click.option(
    "--format", "fmt", type=click.Choice(list(REPORT_FORMATS)), default="json", show_default=True
)
@click.option("--recursive", is_flag=True, help="Include subfolders")
@click.pass_context
@_handle_errors
def ocr_batch(
    ctx: click.Context,
    folder: str,
    pattern: str,
    export_path: str | None,
    fmt: str,
    recursive: bool,
) -> None:
    """OCR every matching image in a folder."""
    files = find_images(folder, pattern, recursive)
    if not files:
        click.secho(f"! No files found matching pattern: {pattern}", fg="yellow")
        return

    click.echo(f"Found {len(files)} file(s) to process")
    engine = create_engine(_config(ctx).ocr)
    results = run_batch(engine, files)
    ok = sum(1 for r in results if r.success)
    _ok(f"Processed {len(results)} images ({ok} successful, {len(results) - ok} failed)")

    if export_path:
        write_report(results, export_path, fmt)
        _ok(f"Results exported to: {export_path}")
        return

    for r in results:
        mark = "✓" if r.success else "✗"
        conf = f"{r.confidence:.0%}" if r.success else "-"
        click.echo(f"{mark} {r.file_name:<40} {conf:>5}  {r.preview()}")


# -- project --


@cli.group()
def project() -> None:
    """Manage projects."""


@project.command("list")
@click.pass_context
@_handle_errors
def project_list(ctx: click.Context) -> None:
    """List all projects."""
    projects = _store(ctx).get_all_projects()
    if not projects:
        click.echo("No projects found.")
        return
    click.echo(f"{'Name':<30} {'Sessions':>8} {'Captures':>8}  Modified")
    click.echo("-" * 70)
    for p in projects:
        click.echo(
            f"{p.name:<30} {len(p.sessions):>8} {p.capture_count:>8}  "
            f"{p.modified.astimezone():%Y-%m-%d %H:%M}"
        )


@project.command("create")
@click.argument("name")
@click.option("--description", default="", help="Project description")
@click.pass_context
@_handle_errors
def project_create(ctx: click.Context, name: str, description: str) -> None:
    """Create a new project."""
    store = _store(ctx)
    if store.find_project(name) is not None:
        _fail(f"Project '{name}' already exists")
    created = store.create_project(name, description)
    _ok(f"Created project '{created.name}'")
    click.echo(f"ID: {created.id}")
    click.echo(f"Path: {created.save_path}")


@project.command("info")
@click.argument("name_or_id")
@click.pass_context
@_handle_errors
def project_info(ctx: click.Context, name_or_id: str) -> None:
    """Show project details."""
    p = _require_project(_store(ctx), name_or_id)
    click.echo(f"Name:        {p.name}")
    click.echo(f"ID:          {p.id}")
    click.echo(f"Description: {p.description or '-'}")
    click.echo(f"Created:     {p.created.astimezone():%Y-%m-%d %H:%M:%S}")
    click.echo(f"Modified:    {p.modified.astimezone():%Y-%m-%d %H:%M:%S}")
    click.echo(f"Path:        {p.save_path}")
    click.echo(f"Sessions:    {len(p.sessions)}")
    for s in p.sessions:
        click.echo(f"  - {s.name} ({len(s.captures)} captures)")
    click.echo()
    click.echo(analytics.summary(analytics.project_analytics(p)), nl=False)


@project.command("delete")
@click.argument("name_or_id")
@click.option("--force", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@_handle_errors
def project_delete(ctx: click.Context, name_or_id: str, force: bool) -> None:
    """Delete a project and its captures."""
    store = _store(ctx)
    p = _require_project(store, name_or_id)
    if not force and not click.confirm(
        f"Delete project '{p.name}' and {p.capture_count} captures?", default=False
    ):
        click.echo("Cancelled.")
        return
    store.delete_project(p)
    _ok(f"Deleted project '{p.name}'")


# -- export --


@cli.group()
def export() -> None:
    """Export project data."""


@export.command("captures")
@click.argument("name_or_id")
@click.option("--output", "-o", default=None, help="Output file path")
@click.option(
    "--format", "fmt", type=click.Choice([f.value for f in ExportFormat]), default=None,
    help="Defaults to export.default_format",
)
@click.option(
    "--text-format", type=click.Choice([m.value for m in DisplayMode]), default=None,
    help="OCR text layout for CSV; defaults to export.ocr_text_format",
)
@click.option("--compress", is_flag=True, help="gzip the JSON output")
@click.option("--thumbnails", is_flag=True, help="Inline thumbnails as base64")
@click.option("--no-bounding-boxes", is_flag=True, help="Omit line/word geometry")
@click.pass_context
@_handle_errors
def export_captures(
    ctx: click.Context,
    name_or_id: str,
    output: str | None,
    fmt: str | None,
    text_format: str | None,
    compress: bool,
    thumbnails: bool,
    no_bounding_boxes: bool,
) -> None:
    """Export all captures from a project."""
    config = _config(ctx)
    p = _require_project(_store(ctx), name_or_id)
    export_format = ExportFormat(fmt or config.export.default_format)
    options = ExportOptions(
        include_bounding_boxes=not no_bounding_boxes,
        include_thumbnails=thumbnails,
        compress_output=compress,
        format=export_format,
        ocr_text_format=DisplayMode.parse(text_format or config.export.ocr_text_format),
    )
    exporter = get_exporter(export_format)
    out = Path(output) if output else Path(f"{p.name.replace(' ', '_')}_export{exporter.file_extension}")

    result = exporter.export_project(p, out, options)
    if not result.success:
        _fail(f"Export failed: {result.error}")
    _ok(f"Exported {result.captures_exported} captures to {result.file_path}")
    click.echo(f"Size: {result.file_size_bytes:,} bytes in {result.duration_ms:.0f} ms")
    for warning in result.warnings:
        click.secho(f"! {warning}", fg="yellow")


@export.command("analytics")
@click.argument("name_or_id")
@click.option("--output", "-o", default=None, help="Output JSON path")
@click.pass_context
@_handle_errors
def export_analytics(ctx: click.Context, name_or_id: str, output: str | None) -> None:
    """Export analytics for a project as JSON."""
    p = _require_project(_store(ctx), name_or_id)
    data = analytics.project_analytics(p)
    out = Path(output) if output else Path(f"{p.name.replace(' ', '_')}_analytics.json")
    out.parent.mkdir(parents=True, exist_ok=True)
    payload = {"project": p.name, "project_id": p.id, **analytics.to_dict(data)}
    out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    click.echo(analytics.summary(data), nl=False)
    _ok(f"Analytics exported to {out}")


# -- template --


def _templates(ctx: click.Context) -> TemplateStore:
    if "templates" not in ctx.obj:
        ctx.obj["templates"] = TemplateStore(_config(ctx).app.data_path)
    return ctx.obj["templates"]


def _require_template(templates: TemplateStore, name_or_id: str) -> MetadataTemplate:
    template = templates.get(name_or_id) or templates.get_by_name(name_or_id)
    if template is None:
        _fail(f"Template not found: {name_or_id}")
    return template


@cli.group()
def template() -> None:
    """Manage metadata templates."""


@template.command("list")
@click.option("--category", default=None, help="Only this category")
@click.pass_context
@_handle_errors
def template_list(ctx: click.Context, category: str | None) -> None:
    """List built-in and user templates."""
    store = _templates(ctx)
    items = store.by_category(category) if category else store.templates
    if not items:
        click.echo("No templates found.")
        return
    click.echo(f"{'Name':<30} {'Category':<14} {'Fields':>6} {'Used':>5}  Kind")
    click.echo("-" * 70)
    for t in items:
        kind = "built-in" if t.is_built_in else "custom"
        click.echo(f"{t.name:<30} {t.category:<14} {len(t.fields):>6} {t.usage_count:>5}  {kind}")


@template.command("show")
@click.argument("name_or_id")
@click.pass_context
@_handle_errors
def template_show(ctx: click.Context, name_or_id: str) -> None:
    """Show a template's fields."""
    t = _require_template(_templates(ctx), name_or_id)
    click.echo(f"{t.name} ({t.category or '-'})")
    click.echo(f"ID: {t.id}")
    if t.description:
        click.echo(t.description)
    click.echo()
    for f in sorted(t.fields, key=lambda f: f.display_order):
        required = " *" if f.is_required else ""
        click.echo(f"  {f.name:<16} {f.field_type.value:<15} {f.label}{required}")


@template.command("export")
@click.argument("name_or_id")
@click.argument("path", type=click.Path(dir_okay=False))
@click.pass_context
@_handle_errors
def template_export(ctx: click.Context, name_or_id: str, path: str) -> None:
    """Write a template to a JSON file."""
    store = _templates(ctx)
    t = _require_template(store, name_or_id)
    written = store.export_template(t.id, path)
    _ok(f"Exported template '{t.name}' to {written}")


@template.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
@_handle_errors
def template_import(ctx: click.Context, path: str) -> None:
    """Import a template from a JSON file as a new custom template."""
    store = _templates(ctx)
    t = store.import_template(path)
    errors = store.validate(t)
    _ok(f"Imported template '{t.name}'")
    click.echo(f"ID: {t.id}")
    for error in errors:
        click.secho(f"! {error}", fg="yellow")


# -- metadata --


def _require_capture(
    store: ProjectStore, project: Project, session_name: str | None, ref: str
) -> ScreenCapture:
    """Find a capture by id, file name or (per session) sequence number."""
    sessions = project.sessions
    if session_name:
        session = store.find_session(project, session_name)
        if session is None:
            _fail(f"Session not found: {session_name}")
        sessions = [session]
    for session in sessions:
        for c in session.captures:
            if ref in (c.id, c.file_name) or (ref.isdigit() and c.sequence_number == int(ref)):
                return c
    _fail(f"Capture not found: {ref}")


def _parse_pairs(pairs: tuple[str, ...]) -> dict[str, str]:
    values: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got '{pair}'", param_hint="--set")
        values[key.strip()] = value
    return values


def _metadata_target(ctx: click.Context, project_name: str, session_name: str | None, ref: str):
    store = _store(ctx)
    project = _require_project(store, project_name)
    return store, project, _require_capture(store, project, session_name, ref)


_session_option = click.option("--session", "-s", "session_name", default=None, help="Session name")


@cli.group()
def metadata() -> None:
    """Attach metadata to captures."""


@metadata.command("apply")
@click.argument("project_name")
@click.argument("capture_ref")
@click.argument("template_name")
@click.option("--set", "pairs", multiple=True, help="Field value as KEY=VALUE")
@_session_option
@click.pass_context
@_handle_errors
def metadata_apply(ctx, project_name, capture_ref, template_name, pairs, session_name) -> None:
    """Fill in a template for a capture, replacing any earlier template values."""
    store, project, capture = _metadata_target(ctx, project_name, session_name, capture_ref)
    templates = _templates(ctx)
    t = _require_template(templates, template_name)
    service = MetadataService(templates)

    values = {**service.default_values(t), **_parse_pairs(pairs)}
    errors = service.validate_values(t.id, values)
    if errors:
        for error in errors:
            click.secho(f"! {error}", fg="yellow", err=True)
        _fail("Metadata not applied")

    with store.lock(project):
        service.apply_template(capture, t.id, values)
        store.save_project(project)
    _ok(f"Applied '{t.name}' to {capture.file_name}")
    for key, value in values.items():
        click.echo(f"  {key}: {value}")


@metadata.command("set")
@click.argument("project_name")
@click.argument("capture_ref")
@click.argument("key")
@click.argument("value")
@_session_option
@click.pass_context
@_handle_errors
def metadata_set(ctx, project_name, capture_ref, key, value, session_name) -> None:
    """Set a free-form metadata field."""
    store, project, capture = _metadata_target(ctx, project_name, session_name, capture_ref)
    with store.lock(project):
        MetadataService.set_field(capture, key, value)
        store.save_project(project)
    _ok(f"{capture.file_name}: {key} = {value}")


@metadata.command("unset")
@click.argument("project_name")
@click.argument("capture_ref")
@click.argument("key")
@_session_option
@click.pass_context
@_handle_errors
def metadata_unset(ctx, project_name, capture_ref, key, session_name) -> None:
    """Remove a free-form metadata field."""
    store, project, capture = _metadata_target(ctx, project_name, session_name, capture_ref)
    with store.lock(project):
        if not MetadataService.remove_field(capture, key):
            _fail(f"No metadata field '{key}' on {capture.file_name}")
        store.save_project(project)
    _ok(f"Removed {key} from {capture.file_name}")


@metadata.command("show")
@click.argument("project_name")
@click.argument("capture_ref")
@_session_option
@click.pass_context
@_handle_errors
def metadata_show(ctx, project_name, capture_ref, session_name) -> None:
    """Show a capture's template values and free-form fields."""
    _, _, capture = _metadata_target(ctx, project_name, session_name, capture_ref)
    click.echo(capture.file_name)
    tm = capture.template_metadata
    if tm is not None:
        click.echo(f"Template: {tm.template_name}")
        for key, value in tm.values.items():
            click.echo(f"  {key}: {value}")
    if capture.metadata:
        click.echo("Fields:")
        for key, value in capture.metadata.items():
            click.echo(f"  {key}: {value}")
    if tm is None and not capture.metadata:
        click.echo("No metadata.")


# -- config / version --


@cli.group("config")
def config_group() -> None:
    """Inspect configuration."""


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Print the effective configuration as YAML."""
    click.echo(yaml.safe_dump(config_to_dict(_config(ctx)), sort_keys=False), nl=False)


@config_group.command("path")
@click.pass_context
def config_path(ctx: click.Context) -> None:
    """Show which config file is in use."""
    loaded = _config(ctx)._config_path
    click.echo(loaded or f"(defaults - no config file; expected at {app_dir() / 'config.yaml'})")
    app = _config(ctx).app
    click.echo(f"Data directory: {app.data_path}")
    click.echo(f"Projects:       {app.projects_path}")
    click.echo(f"Templates:      {app.templates_path}")


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_context
@_handle_errors
def config_init(ctx: click.Context, force: bool) -> None:
    """Write the current configuration to the per-user config.yaml."""
    target = app_dir() / "config.yaml"
    if target.exists() and not force:
        _fail(f"{target} already exists (use --force)")
    save_config(_config(ctx), target)
    _ok(f"Wrote {target}")


@cli.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    click.echo(f"{APP_NAME} {_config(ctx).app.version}")
    click.echo(f"Python {platform.python_version()} on {platform.system()}")


if __name__ == "__main__":
    cli()
