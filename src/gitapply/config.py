"""TOML configuration loading for gitapply."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .selector import compile_glob

DEFAULT_CONFIG_FILENAME = "gitapply.toml"
DEFAULT_BRANCH = "main"
DEFAULT_INTERVAL = 60.0


class ConfigError(RuntimeError):
    """Raised when a configuration file cannot be parsed or validated."""


def _expand_path(raw: str | os.PathLike[str] | Path, *, base_dir: Path) -> Path:
    """Return an absolute ``Path`` by expanding env vars and user segments."""

    text = str(raw)
    expanded = Path(os.path.expandvars(text)).expanduser()
    if expanded.is_absolute():
        return expanded.resolve(strict=False)
    return (base_dir / expanded).resolve(strict=False)


class Settings(BaseModel):
    """Global configuration options."""

    model_config = ConfigDict(frozen=True)

    clone_root: Path = Field(default_factory=lambda: Path("./clones"))
    log_level: str = "INFO"

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, base_dir: Path) -> "Settings":
        clone_root = _expand_path(raw.get("clone_root", Path("./clones")), base_dir=base_dir)
        return cls(clone_root=clone_root, log_level=str(raw.get("log_level", "INFO")).upper())


class MethodConfig(BaseModel):
    """Configuration for one deployment method attached to a target."""

    model_config = ConfigDict(frozen=True)

    kind: str
    target_path: str = ""
    glob: str | None = None
    suffixes: tuple[str, ...] | None = None
    interval: float = DEFAULT_INTERVAL
    jitter: float = 0.0
    destination: Path | None = None
    mode: int | None = None

    @field_validator("target_path")
    @classmethod
    def _check_target_path(cls, value: str) -> str:
        candidate = PurePosixPath(value.replace("\\", "/"))
        if candidate.is_absolute():
            raise ValueError(f"target_path '{value}' must be relative to the repository root")
        if ".." in candidate.parts:
            raise ValueError(f"target_path '{value}' must not escape the repository")
        text = candidate.as_posix()
        return "" if text == "." else text

    @field_validator("glob")
    @classmethod
    def _check_glob(cls, value: str | None) -> str | None:
        if value is not None:
            compile_glob(value)
        return value

    @field_validator("interval")
    @classmethod
    def _check_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("interval must be positive")
        return value

    @field_validator("jitter")
    @classmethod
    def _check_jitter(cls, value: float) -> float:
        if value < 0:
            raise ValueError("jitter must not be negative")
        return value

    @field_validator("mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return int(value, 8)
            except ValueError as exc:
                raise ValueError(f"mode '{value}' is not an octal permission string") from exc
        return value

    @classmethod
    def from_raw(cls, kind: str, raw: Mapping[str, Any], *, base_dir: Path) -> "MethodConfig":
        data = dict(raw)
        data.pop("kind", None)
        if data.get("destination") is not None:
            data["destination"] = _expand_path(data["destination"], base_dir=base_dir)
        if data.get("suffixes") is not None:
            data["suffixes"] = tuple(str(suffix) for suffix in data["suffixes"])
        return cls(kind=kind, **data)


class TargetConfig(BaseModel):
    """A repository branch to track and the methods applied to it."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    branch: str = DEFAULT_BRANCH
    clone_dir: Path
    methods: Dict[str, MethodConfig]

    @classmethod
    def from_raw(cls, name: str, raw: Mapping[str, Any], *, settings: Settings, base_dir: Path) -> "TargetConfig":
        url = raw.get("url")
        if not url:
            raise ConfigError(f"Target '{name}' must define a 'url'")

        clone_raw = raw.get("clone_dir")
        clone_dir = (
            _expand_path(clone_raw, base_dir=base_dir) if clone_raw is not None else settings.clone_root / name
        )

        methods_section = raw.get("methods")
        if not methods_section:
            raise ConfigError(f"Target '{name}' must define at least one [targets.{name}.methods.<kind>] table")

        methods: Dict[str, MethodConfig] = {}
        for kind, body in methods_section.items():
            try:
                methods[kind] = MethodConfig.from_raw(kind, body, base_dir=base_dir)
            except ValidationError as exc:
                raise ConfigError(f"Target '{name}' method '{kind}' is invalid: {_first_error(exc)}") from exc

        return cls(
            name=name,
            url=_normalize_url(str(url), base_dir=base_dir),
            branch=str(raw.get("branch", DEFAULT_BRANCH)),
            clone_dir=clone_dir,
            methods=methods,
        )


class Config(BaseModel):
    """Fully parsed configuration file."""

    model_config = ConfigDict(frozen=True)

    config_path: Path
    settings: Settings
    targets: Dict[str, TargetConfig]

    def target(self, name: str) -> TargetConfig:
        try:
            return self.targets[name]
        except KeyError as exc:
            raise ConfigError(f"Unknown target '{name}'") from exc


def load_config(path: Path | None = None) -> Config:
    """Load and validate a configuration file.

    Args:
        path: Optional path to the TOML file or its directory. Defaults to
            ``gitapply.toml`` in the current working directory.
    """

    config_path = _resolve_config_path(path)
    base_dir = config_path.parent

    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Configuration file '{config_path}' is not valid TOML: {exc}") from exc

    settings = Settings.from_raw(data.get("settings", {}), base_dir=base_dir)

    targets_section = data.get("targets")
    if not targets_section:
        raise ConfigError("Configuration must define at least one [targets.<name>] table")

    targets: Dict[str, TargetConfig] = {
        name: TargetConfig.from_raw(name, body, settings=settings, base_dir=base_dir)
        for name, body in targets_section.items()
    }

    return Config(config_path=config_path, settings=settings, targets=targets)


def _normalize_url(url: str, *, base_dir: Path) -> str:
    if "://" in url or url.startswith("git@"):
        return url
    return str(_expand_path(url, base_dir=base_dir))


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:  # pragma: no cover - pydantic always reports at least one error
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def _resolve_config_path(path: Path | None) -> Path:
    if path is None:
        path = Path.cwd() / DEFAULT_CONFIG_FILENAME
    else:
        path = Path(path)

    if not path.exists():
        raise ConfigError(f"Configuration file '{path}' does not exist")
    if path.is_dir():
        candidate = path / DEFAULT_CONFIG_FILENAME
        if not candidate.exists():
            raise ConfigError(f"Expected to find '{DEFAULT_CONFIG_FILENAME}' inside '{path}', but none was located")
        path = candidate

    return path.resolve(strict=False)
