"""Configuration loading and validation."""

from __future__ import annotations

import os
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path

import structlog
import yaml

log = structlog.get_logger()

APP_NAME = "capturedesk"


def app_dir() -> Path:
    """Per-user data directory (projects, templates, config.yaml)."""
    env = os.environ.get("CAPTUREDESK_HOME")
    if env:
        return Path(env).expanduser().resolve()
    if platform.system() == "Windows":
        return Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming")) / APP_NAME
    if platform.system() == "Darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    return Path.home() / ".config" / APP_NAME


_SEARCH_PATHS = [
    lambda: os.environ.get("CAPTUREDESK_CONFIG"),
    lambda: "config.yaml",
    lambda: str(app_dir() / "config.yaml"),
]


@dataclass
class AppSettings:
    version: str = "2.0.0"
    data_dir: str = ""

    @property
    def data_path(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir).expanduser().resolve()
        return app_dir()

    @property
    def projects_path(self) -> Path:
        return self.data_path / "projects"

    @property
    def templates_path(self) -> Path:
        return self.data_path / "templates"


@dataclass
class CaptureConfig:
    save_directory: str = ""
    image_format: str = "png"
    jpeg_quality: int = 95
    default_mode: str = "region"
    hide_delay_ms: int = 500

    def __post_init__(self) -> None:
        self.image_format = self.image_format.lower()
        if self.image_format not in ("png", "jpg"):
            raise ValueError(f"capture.image_format must be png or jpg, got {self.image_format}")
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError(f"capture.jpeg_quality must be 1-100, got {self.jpeg_quality}")


@dataclass
class OCRConfig:
    engine: str = "tesseract"
    languages: list[str] = field(default_factory=lambda: ["eng"])
    psm: int = 3
    confidence_threshold: float = 0.7
    queue_delay_ms: int = 500
    rename_settle_ms: int = 100
    auto_process: bool = True
    display_mode: str = "continuous"

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("ocr.confidence_threshold must be 0.0-1.0")
        if self.queue_delay_ms < 0 or self.rename_settle_ms < 0:
            raise ValueError("ocr delays must not be negative")

    @property
    def tesseract_lang(self) -> str:
        return "+".join(self.languages) or "eng"


@dataclass
class NamingConfig:
    default_pattern: str = "capture_{session}_{timestamp}"
    timestamp_format: str = "yyyyMMdd_HHmmss"
    use_smart_filenames: bool = True
    smart_filename_max_length: int = 50
    fallback_pattern: str = "capture_{timestamp}"

    def __post_init__(self) -> None:
        if self.smart_filename_max_length < 1:
            raise ValueError("naming.smart_filename_max_length must be positive")


@dataclass
class ExportConfig:
    default_format: str = "json"
    ocr_text_format: str = "continuous"


@dataclass
class UIConfig:
    show_notifications: bool = True
    notification_duration_ms: int = 3000
    theme: str = "dark"


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class Config:
    app: AppSettings = field(default_factory=AppSettings)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    naming: NamingConfig = field(default_factory=NamingConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    _config_path: str | None = None


def _find_config() -> Path | None:
    for getter in _SEARCH_PATHS:
        path_str = getter()
        if path_str and Path(path_str).is_file():
            return Path(path_str).resolve()
    return None


def _build_section(cls: type, data: dict | None) -> object:
    known = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in (data or {}).items() if k in known}
    return cls(**filtered)


def load_config(path: str | Path | None = None) -> Config:
    """Load configuration from a YAML file."""
    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.is_file():
            raise FileNotFoundError(f"Config not found: {config_path}")
    else:
        config_path = _find_config()

    if config_path is None:
        log.warning("no_config_found, using defaults")
        return Config()

    log.info("loading_config", path=str(config_path))
    with open(config_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping: {config_path}")

    cfg = Config(
        app=_build_section(AppSettings, raw.get("app")),
        capture=_build_section(CaptureConfig, raw.get("capture")),
        ocr=_build_section(OCRConfig, raw.get("ocr")),
        naming=_build_section(NamingConfig, raw.get("naming")),
        export=_build_section(ExportConfig, raw.get("export")),
        ui=_build_section(UIConfig, raw.get("ui")),
        logging=_build_section(LoggingConfig, raw.get("logging")),
        _config_path=str(config_path),
    )
    return cfg


def config_to_dict(config: Config) -> dict:
    data = asdict(config)
    data.pop("_config_path", None)
    return data


def save_config(config: Config, path: str | Path) -> Path:
    """Write config as YAML (used to seed a default config.yaml)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config_to_dict(config), f, sort_keys=False)
    return path
