"""Configuration loader for uptimer.

Configuration values are merged from several sources, later ones winning:

1. Built-in defaults.
2. The YAML file passed with ``-configFile``.
3. Environment variables prefixed with ``UPTIMER_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export UPTIMER_CF__ADMIN_PASSWORD=secret
    export UPTIMER_ALLOWED_FAILURES__HTTP_AVAILABILITY=10

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The result is exposed as immutable ``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "UPTIMER_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing or validation fails."""


@dataclass(frozen=True)
class CfConfig:
    """Target platform endpoint and credentials."""

    api: str
    app_domain: str
    admin_user: str
    admin_password: str
    tcp_domain: str | None = None
    available_port: int | None = None
    skip_ssl_validation: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation with the password masked."""
        return {
            "api": self.api,
            "app_domain": self.app_domain,
            "admin_user": self.admin_user,
            "admin_password": "***" if self.admin_password else "",
            "tcp_domain": self.tcp_domain,
            "available_port": self.available_port,
            "skip_ssl_validation": self.skip_ssl_validation,
        }


@dataclass(frozen=True)
class SessionConfig:
    """Session timing."""

    duration: float | None = None
    streaming_timeout: float = 15.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"duration": self.duration, "streaming_timeout": self.streaming_timeout}


@dataclass(frozen=True)
class WhileCommand:
    """An external command that bounds the session while it runs."""

    command: str
    command_args: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"command": self.command, "command_args": list(self.command_args)}


@dataclass(frozen=True)
class AllowedFailures:
    """Failure budget per probe."""

    http_availability: int = 5
    app_pushability: int = 2
    recent_logs: int = 2
    streaming_logs: int = 2
    app_syslog_availability: int = 2

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "http_availability": self.http_availability,
            "app_pushability": self.app_pushability,
            "recent_logs": self.recent_logs,
            "streaming_logs": self.streaming_logs,
            "app_syslog_availability": self.app_syslog_availability,
        }


@dataclass(frozen=True)
class OptionalTests:
    """Toggles for probes that need extra platform features."""

    run_app_syslog_availability: bool = False
    run_windows_app_pushability: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "run_app_syslog_availability": self.run_app_syslog_availability,
            "run_windows_app_pushability": self.run_windows_app_pushability,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for an uptimer session."""

    config_file: Path
    cf: CfConfig
    session: SessionConfig
    while_commands: tuple[WhileCommand, ...]
    allowed_failures: AllowedFailures
    optional_tests: OptionalTests
    logs_dir: Path | None
    result_file: Path | None

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "cf": self.cf.to_dict(),
            "session": self.session.to_dict(),
            "while": [command.to_dict() for command in self.while_commands],
            "allowed_failures": self.allowed_failures.to_dict(),
            "optional_tests": self.optional_tests.to_dict(),
            "logs_dir": str(self.logs_dir) if self.logs_dir else None,
            "result_file": str(self.result_file) if self.result_file else None,
        }


DEFAULTS: dict[str, object] = {
    "cf": {
        "api": None,
        "app_domain": None,
        "admin_user": None,
        "admin_password": None,
        "tcp_domain": None,
        "available_port": None,
        "skip_ssl_validation": True,
    },
    "session": {
        "duration": None,
        "streaming_timeout": 15.0,
    },
    "while": [],
    "allowed_failures": {
        "http_availability": 5,
        "app_pushability": 2,
        "recent_logs": 2,
        "streaming_logs": 2,
        "app_syslog_availability": 2,
    },
    "optional_tests": {
        "run_app_syslog_availability": False,
        "run_windows_app_pushability": False,
    },
    "logs_dir": None,
    "result_file": None,
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: Mapping[str, set[str]] = {
    "cf": set(cast(Mapping[str, object], DEFAULTS["cf"]).keys()),
    "session": set(cast(Mapping[str, object], DEFAULTS["session"]).keys()),
    "allowed_failures": set(cast(Mapping[str, object], DEFAULTS["allowed_failures"]).keys()),
    "optional_tests": set(cast(Mapping[str, object], DEFAULTS["optional_tests"]).keys()),
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load, merge and validate configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_path = _determine_config_path(config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    _validate_structure(merged)

    config = _build_app_config(merged, config_path)
    validate_config(config)
    return config


def validate_config(config: AppConfig) -> None:
    """Check cross-field requirements that the structure check cannot express."""
    missing = [
        f"cf.{name}"
        for name in ("api", "app_domain", "admin_user", "admin_password")
        if not getattr(config.cf, name)
    ]
    if missing:
        raise ConfigError(f"Missing required configuration values: {', '.join(missing)}.")

    if config.optional_tests.run_app_syslog_availability:
        if not config.cf.tcp_domain or config.cf.available_port is None:
            raise ConfigError(
                "cf.tcp_domain and cf.available_port are required when "
                "optional_tests.run_app_syslog_availability is enabled."
            )

    if config.session.duration is None and not config.while_commands:
        raise ConfigError("Either session.duration or at least one 'while' command is required.")


def _determine_config_path(
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    raise ConfigError("'-configFile' flag required")


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        raise ConfigError(f"Config file {path} does not exist.")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    for index, entry in enumerate(_as_sequence(raw.get("while") or [], "while")):
        mapping = _as_dict(entry, f"while[{index}]")
        unknown = set(mapping.keys()) - {"command", "command_args"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown keys for while[{index}]: {joined}.")
        command = mapping.get("command")
        if not isinstance(command, str) or not command.strip():
            raise ConfigError(f"while[{index}].command must be a non-empty string.")


def _build_app_config(raw: Mapping[str, object], config_path: Path) -> AppConfig:
    cf_mapping = _as_dict(raw.get("cf"), "cf")
    port_value = cf_mapping.get("available_port")
    available_port = (
        None if port_value is None else _expect_int(port_value, "cf.available_port", default=0)
    )
    if available_port is not None and not 0 < available_port < 65536:
        raise ConfigError(f"cf.available_port must be a valid TCP port. Got {available_port}.")
    cf = CfConfig(
        api=_optional_str(cf_mapping.get("api"), "cf.api") or "",
        app_domain=_optional_str(cf_mapping.get("app_domain"), "cf.app_domain") or "",
        admin_user=_optional_str(cf_mapping.get("admin_user"), "cf.admin_user") or "",
        admin_password=_optional_str(cf_mapping.get("admin_password"), "cf.admin_password") or "",
        tcp_domain=_optional_str(cf_mapping.get("tcp_domain"), "cf.tcp_domain"),
        available_port=available_port,
        skip_ssl_validation=_expect_bool(
            cf_mapping.get("skip_ssl_validation"), "cf.skip_ssl_validation", default=True
        ),
    )

    session_mapping = _as_dict(raw.get("session"), "session")
    duration_value = session_mapping.get("duration")
    session = SessionConfig(
        duration=(
            None
            if duration_value is None
            else _expect_positive_float(duration_value, "session.duration", default=1.0)
        ),
        streaming_timeout=_expect_positive_float(
            session_mapping.get("streaming_timeout"),
            "session.streaming_timeout",
            default=15.0,
        ),
    )

    while_commands: list[WhileCommand] = []
    for index, entry in enumerate(_as_sequence(raw.get("while") or [], "while")):
        mapping = _as_dict(entry, f"while[{index}]")
        args = _as_sequence(mapping.get("command_args") or [], f"while[{index}].command_args")
        while_commands.append(
            WhileCommand(
                command=str(mapping["command"]),
                command_args=tuple(str(arg) for arg in args),
            )
        )

    failures_mapping = _as_dict(raw.get("allowed_failures"), "allowed_failures")
    defaults = AllowedFailures()
    budgets: dict[str, int] = {}
    for name in _SECTION_KEYS["allowed_failures"]:
        value = _expect_int(
            failures_mapping.get(name),
            f"allowed_failures.{name}",
            default=getattr(defaults, name),
        )
        if value < 0:
            raise ConfigError(f"allowed_failures.{name} must be non-negative.")
        budgets[name] = value
    allowed_failures = AllowedFailures(**budgets)

    optional_mapping = _as_dict(raw.get("optional_tests"), "optional_tests")
    optional_tests = OptionalTests(
        run_app_syslog_availability=_expect_bool(
            optional_mapping.get("run_app_syslog_availability"),
            "optional_tests.run_app_syslog_availability",
            default=False,
        ),
        run_windows_app_pushability=_expect_bool(
            optional_mapping.get("run_windows_app_pushability"),
            "optional_tests.run_windows_app_pushability",
            default=False,
        ),
    )

    logs_dir_value = raw.get("logs_dir")
    result_file_value = raw.get("result_file")
    return AppConfig(
        config_file=config_path,
        cf=cf,
        session=session,
        while_commands=tuple(while_commands),
        allowed_failures=allowed_failures,
        optional_tests=optional_tests,
        logs_dir=_to_path(logs_dir_value) if logs_dir_value else None,
        result_file=_to_path(result_file_value) if result_file_value else None,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _optional_str(value: object, label: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ConfigError(f"Expected {label} to be a string. Got {type(value).__name__}.")
    text = str(value).strip()
    return text or None


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AllowedFailures",
    "AppConfig",
    "CfConfig",
    "ConfigError",
    "OptionalTests",
    "SessionConfig",
    "WhileCommand",
    "load_config",
    "validate_config",
]
