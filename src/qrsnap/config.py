import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional


@dataclass
class ScannerConfig:
    backend: str = "opencv"
    cooldown_seconds: float = 3.0
    refresh_hz: float = 60.0
    realtime: bool = False
    out_dir: Path = Path("qrcode_snapshots")
    archive: Optional[Path] = None
    deliver: bool = True
    validate_workers: int = 2
    show_preview: bool = False


# (section, key) in config.toml -> ScannerConfig field
_TOML_KEYS = {
    ("qr", "backend"): "backend",
    ("timing", "cooldown_seconds"): "cooldown_seconds",
    ("timing", "refresh_hz"): "refresh_hz",
    ("video", "realtime"): "realtime",
    ("output", "dir"): "out_dir",
    ("output", "archive"): "archive",
    ("output", "deliver"): "deliver",
    ("output", "validate_workers"): "validate_workers",
    ("ui", "show_preview"): "show_preview",
}

_PATH_FIELDS = {"out_dir", "archive"}


def load_config(path: str | Path) -> dict:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")
    with config_path.open("rb") as f:
        return tomllib.load(f)


def scanner_config_from_dict(raw: dict, **overrides) -> ScannerConfig:
    """
    Build a ScannerConfig from a parsed config.toml.

    Unknown sections and keys are ignored. Keyword overrides whose value is
    None are ignored too, so argparse defaults can be passed straight in.
    """
    values = {}
    for (section, key), name in _TOML_KEYS.items():
        section_cfg = raw.get(section, {})
        if key in section_cfg:
            values[name] = section_cfg[key]

    known = {f.name for f in fields(ScannerConfig)}
    for name, value in overrides.items():
        if name in known and value is not None:
            values[name] = value

    for name in _PATH_FIELDS:
        if values.get(name) is not None:
            values[name] = Path(values[name])
    return ScannerConfig(**values)
