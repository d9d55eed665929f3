"""Project configuration for reactor.

Two files in the project root are consulted:

- ``.claude-reactor``: bash-style ``key=value`` lines written by the rest of
  the toolchain. Supplies the default container when none is given.
- ``.claude-reactor-hotreload.yaml``: optional hot-reload overrides, a
  mapping of HotReloadOptions fields.
"""

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import ValidationError

from reactor.hotreload.errors import ConfigError
from reactor.hotreload.models import HotReloadOptions

logger = logging.getLogger(__name__)

PROJECT_CONFIG_FILE = ".claude-reactor"
HOTRELOAD_CONFIG_FILE = ".claude-reactor-hotreload.yaml"

DEFAULT_VARIANT = "base"


@dataclass
class ProjectConfig:
    """Settings read from a project directory."""

    variant: str = DEFAULT_VARIANT
    account: str | None = None
    container_id: str | None = None
    danger: bool = False
    hotreload: HotReloadOptions = field(default_factory=HotReloadOptions)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def parse_reactor_file(text: str) -> dict[str, str]:
    """Parse ``key=value`` lines, skipping blanks, comments and malformed lines."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = _unquote(value.strip())
    return values


class ProjectConfigLoader:
    """Loads ProjectConfig from a project directory."""

    def load(self, project_path: str | Path) -> ProjectConfig:
        """Load both config files. Missing files yield defaults.

        Raises:
            ConfigError: If a file exists but cannot be read or parsed.
        """
        project_path = Path(project_path)
        config = ProjectConfig()

        reactor_file = project_path / PROJECT_CONFIG_FILE
        if reactor_file.is_file():
            try:
                values = parse_reactor_file(reactor_file.read_text())
            except OSError as e:
                raise ConfigError(f"Cannot read {reactor_file}: {e}") from e
            config.variant = values.get("variant") or DEFAULT_VARIANT
            config.account = values.get("account") or None
            config.container_id = values.get("container_id") or None
            config.danger = values.get("danger") == "true"
            logger.debug(f"Configuration loaded from {reactor_file}")
        else:
            logger.debug(f"No {PROJECT_CONFIG_FILE} file in {project_path}, using defaults")

        hotreload_file = project_path / HOTRELOAD_CONFIG_FILE
        if hotreload_file.is_file():
            config.hotreload = self._load_hotreload(hotreload_file)

        return config

    def _load_hotreload(self, path: Path) -> HotReloadOptions:
        try:
            data = yaml.safe_load(path.read_text())
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            return HotReloadOptions()
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping of hot reload options")

        unknown = sorted(set(data) - set(HotReloadOptions.model_fields))
        if unknown:
            raise ConfigError(f"Unknown hot reload options in {path}: {', '.join(unknown)}")

        try:
            options = HotReloadOptions.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid hot reload options in {path}: {e}") from e

        # Relative mapping paths are relative to the project
        if options.sync_mappings:
            for mapping in options.sync_mappings:
                if not mapping.host_path.is_absolute():
                    mapping.host_path = path.parent / mapping.host_path
        logger.debug(f"Hot reload overrides loaded from {path}")
        return options


def merge_options(base: HotReloadOptions | None, override: HotReloadOptions | None) -> HotReloadOptions:
    """Combine two option sets; set fields of ``override`` win."""
    base = base or HotReloadOptions()
    if override is None:
        return base.model_copy(deep=True)
    updates = {
        name: copy.deepcopy(getattr(override, name))
        for name in HotReloadOptions.model_fields
        if getattr(override, name) is not None
    }
    return base.model_copy(update=updates, deep=True)


def validate_options(options: HotReloadOptions) -> None:
    """Reject option values the engine cannot run with.

    Raises:
        ConfigError: Describing the first invalid field.
    """
    if options.debounce_delay_ms is not None and options.debounce_delay_ms < 0:
        raise ConfigError("debounce_delay_ms must be >= 0")
    if options.max_wait_ms is not None and options.max_wait_ms <= 0:
        raise ConfigError("max_wait_ms must be > 0")
    if options.poll_interval_ms is not None and options.poll_interval_ms <= 0:
        raise ConfigError("poll_interval_ms must be > 0")
    if options.build_timeout_seconds is not None and options.build_timeout_seconds <= 0:
        raise ConfigError("build_timeout_seconds must be > 0")

    for name in ("include_patterns", "exclude_patterns", "build_patterns"):
        patterns = getattr(options, name)
        if patterns is not None and any(not p.strip() for p in patterns):
            raise ConfigError(f"{name} must not contain empty patterns")

    if options.build_command is not None and any(not part for part in options.build_command):
        raise ConfigError("build_command must not contain empty arguments")

    if options.container_path is not None and not options.container_path.startswith("/"):
        raise ConfigError(f"container_path must be absolute: {options.container_path}")

    for mapping in options.sync_mappings or []:
        if not mapping.container_path.startswith("/"):
            raise ConfigError(f"Sync mapping container path must be absolute: {mapping.container_path}")
        if not mapping.host_path.is_absolute():
            raise ConfigError(f"Sync mapping host path must be absolute: {mapping.host_path}")
