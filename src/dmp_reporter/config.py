"""Configuration management for the server list reporter.

This module provides TOML-based settings with CLI override capability, plus
one-time migration of the legacy flat-file and XML settings formats.

Configuration priority: CLI args > user settings file > default config
"""

from __future__ import annotations

import argparse
import importlib.resources
import logging
import os
import tomllib
import xml.etree.ElementTree as ElementTree
from dataclasses import dataclass, fields
from dataclasses import replace as dataclass_replace
from pathlib import Path
from typing import Any, NamedTuple

import tomlkit

from .endpoint import EndpointError, parse_endpoint
from .identity import (
    DESCRIPTION_FILE,
    TOKEN_FILE,
    ReportingIdentity,
    load_description,
    load_identity,
)

logger = logging.getLogger(__name__)

SETTINGS_FILE = "ReportingSettings.toml"
LEGACY_SETTINGS_FILE = "ReportingSettings.txt"
LEGACY_XML_SETTINGS_FILE = "ReportingSettings.xml"

# Receiver added to endpoint lists migrated from the legacy flat file
LEGACY_FALLBACK_ENDPOINT = "godarklight.info.tm:9001"


class ConfigurationError(Exception):
    """Raised when configuration validation fails.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")


class DefaultConfigError(Exception):
    """Raised when the bundled default configuration cannot be loaded."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to load default configuration: {message}")


class ConfigOverride(NamedTuple):
    """A settings value that differs from the bundled default."""

    key: str
    default_value: Any
    new_value: Any


@dataclass(frozen=True)
class ReporterConfig:
    """Reporter configuration. Immutable once loaded; reload builds a new one."""

    # Receivers
    endpoints: tuple[str, ...]

    # Server list metadata
    game_address: str
    banner: str
    homepage: str
    admin: str
    team: str
    location: str
    fixed_ip: bool

    # Timing settings
    connect_timeout: float
    heartbeat_interval: float
    poll_interval: float
    retry_delay: float
    outage_retry_delay: float

    # Logging settings
    log_dir: str | None
    log_level_console: str
    log_json_console: bool
    log_rotation: str | None
    log_retention: str | None


@dataclass(frozen=True)
class ReportingSettings:
    """Everything the reporter needs from disk, loaded together."""

    config: ReporterConfig
    identity: ReportingIdentity
    description: str


# TOML section -> keys it may contain
_SECTIONS: dict[str, tuple[str, ...]] = {
    "reporting": ("endpoints",),
    "server": (
        "game_address",
        "banner",
        "homepage",
        "admin",
        "team",
        "location",
        "fixed_ip",
    ),
    "timing": (
        "connect_timeout",
        "heartbeat_interval",
        "poll_interval",
        "retry_delay",
        "outage_retry_delay",
    ),
    "logging": (
        "log_dir",
        "log_level_console",
        "log_json_console",
        "log_rotation",
        "log_retention",
    ),
}

_OPTIONAL_STRING_KEYS = ("log_dir", "log_rotation", "log_retention")


def load_default_toml_text() -> str:
    """Return the bundled default.toml, comments included.

    Raises:
        DefaultConfigError: If default.toml cannot be read.
    """
    try:
        files = importlib.resources.files("dmp_reporter")
        return files.joinpath("default.toml").read_bytes().decode("utf-8")
    except FileNotFoundError as e:
        raise DefaultConfigError(f"default.toml not found in package: {e}") from e
    except Exception as e:
        raise DefaultConfigError(f"Failed to read default.toml: {e}") from e


def load_default_toml_data() -> dict[str, Any]:
    """Load the default.toml data from the bundled package resource.

    Raises:
        DefaultConfigError: If default.toml cannot be found or parsed.
    """
    content = load_default_toml_text()
    try:
        return tomllib.loads(content)
    except tomllib.TOMLDecodeError as e:
        raise DefaultConfigError(f"Invalid TOML syntax in default.toml: {e}") from e


def load_config_from_toml(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        tomllib.TOMLDecodeError: If the TOML syntax is invalid.
    """
    with open(path, "rb") as f:
        return tomllib.load(f)


def flatten_toml_config(toml_data: dict[str, Any]) -> dict[str, Any]:
    """Flatten sectioned TOML data into ReporterConfig field names.

    Unknown sections and keys are ignored; see get_unknown_keys().
    """
    result: dict[str, Any] = {}

    for section, keys in _SECTIONS.items():
        table = toml_data.get(section)
        if not isinstance(table, dict):
            continue
        for key in keys:
            if key not in table:
                continue
            value = table[key]
            # Convert empty strings to None for optional fields
            if key in _OPTIONAL_STRING_KEYS and value == "":
                value = None
            if key == "endpoints" and isinstance(value, list):
                value = tuple(value)
            result[key] = value

    return result


def get_unknown_keys(toml_data: dict[str, Any]) -> list[str]:
    """Detect unknown sections and keys (likely typos)."""
    unknown: list[str] = []

    for section, table in toml_data.items():
        if section not in _SECTIONS:
            unknown.append(section)
            continue
        if not isinstance(table, dict):
            unknown.append(section)
            continue
        for key in table:
            if key not in _SECTIONS[section]:
                unknown.append(f"{section}.{key}")

    return unknown


def validate_config(config: ReporterConfig) -> list[str]:
    """Validate configuration values.

    Returns:
        List of error messages. Empty list if configuration is valid.
    """
    errors: list[str] = []

    if not isinstance(config.endpoints, tuple) or not config.endpoints:
        errors.append("endpoints must be a non-empty list")
    else:
        for endpoint in config.endpoints:
            if not isinstance(endpoint, str):
                errors.append(f"endpoint must be a string, got {endpoint!r}")
                continue
            try:
                parse_endpoint(endpoint)
            except EndpointError as e:
                errors.append(f"invalid endpoint {e}")

    string_fields = ["game_address", "banner", "homepage", "admin", "team", "location"]
    for field_name in string_fields:
        value = getattr(config, field_name)
        if not isinstance(value, str):
            errors.append(f"{field_name} must be a string, got {value!r}")

    if not isinstance(config.fixed_ip, bool):
        errors.append(f"fixed_ip must be true or false, got {config.fixed_ip!r}")

    timing_fields = [
        "connect_timeout",
        "heartbeat_interval",
        "poll_interval",
        "retry_delay",
        "outage_retry_delay",
    ]
    for field_name in timing_fields:
        value = getattr(config, field_name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{field_name} must be a number, got {value!r}")
        elif value <= 0:
            errors.append(f"{field_name} must be positive, got {value}")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if str(config.log_level_console).upper() not in valid_log_levels:
        errors.append(
            f"log_level_console must be one of {valid_log_levels}, "
            f"got {config.log_level_console}"
        )

    return errors


def load_default_config() -> ReporterConfig:
    """Load the default configuration from the bundled default.toml.

    Raises:
        DefaultConfigError: If default.toml cannot be loaded or is incomplete.
    """
    config_data = flatten_toml_config(load_default_toml_data())

    config_fields = {f.name for f in fields(ReporterConfig)}
    missing = config_fields - set(config_data.keys())
    if missing:
        raise DefaultConfigError(
            f"Missing required fields in default.toml: {', '.join(sorted(missing))}"
        )

    try:
        return ReporterConfig(**config_data)
    except TypeError as e:
        raise DefaultConfigError(f"Invalid field types in default.toml: {e}") from e


def merge_cli_args(config: ReporterConfig, args: argparse.Namespace) -> ReporterConfig:
    """Merge CLI arguments into config (CLI takes precedence).

    Only overrides config values when CLI args are explicitly provided.
    """
    updates: dict[str, Any] = {}

    if getattr(args, "endpoint", None):
        updates["endpoints"] = tuple(args.endpoint)

    if getattr(args, "log_dir", None) is not None:
        updates["log_dir"] = str(args.log_dir)
    if getattr(args, "log_level_console", None) is not None:
        updates["log_level_console"] = args.log_level_console
    if getattr(args, "log_json_console", False):
        updates["log_json_console"] = True
    if getattr(args, "log_rotation", None) is not None:
        updates["log_rotation"] = args.log_rotation
    if getattr(args, "log_retention", None) is not None:
        updates["log_retention"] = args.log_retention

    if not updates:
        return config

    return dataclass_replace(config, **updates)


def get_config_overrides(config: ReporterConfig) -> list[ConfigOverride]:
    """List every value that differs from the bundled defaults."""
    defaults = load_default_config()
    overrides: list[ConfigOverride] = []
    for f in fields(ReporterConfig):
        default_value = getattr(defaults, f.name)
        new_value = getattr(config, f.name)
        if default_value != new_value:
            overrides.append(ConfigOverride(f.name, default_value, new_value))
    return overrides


def parse_legacy_settings(path: Path) -> tuple[dict[str, Any], str]:
    """Read the legacy ``key = value`` settings file.

    ``reporting`` may appear several times. ``description`` starts a free-text
    block that runs to the end of the file.

    Returns:
        Tuple of (flattened settings, description text).
    """
    values: dict[str, Any] = {}
    endpoints: list[str] = []
    description_lines: list[str] = []
    reading_description = False

    with open(path, encoding="utf-8") as f:
        for line in f.read().splitlines():
            if reading_description:
                description_lines.append(line)
                continue

            key, sep, value = line.partition("=")
            if not sep:
                if line.strip():
                    logger.error(f"Error reading settings file, ignoring line: {line!r}")
                continue
            key = key.strip()
            value = value.strip()

            if key == "reporting":
                endpoints.append(value)
            elif key == "gameAddress":
                values["game_address"] = value
            elif key in ("banner", "homepage", "admin", "team", "location"):
                values[key] = value
            elif key == "fixedIP":
                values["fixed_ip"] = value == "true"
            elif key == "description":
                reading_description = True
                description_lines.append(value)

    if endpoints:
        values["endpoints"] = tuple(endpoints)

    description = "".join(f"{line}\n" for line in description_lines)
    return values, description


def parse_legacy_xml_settings(path: Path) -> dict[str, Any]:
    """Read the legacy XML settings document into flattened settings."""
    root = ElementTree.parse(path).getroot()
    values: dict[str, Any] = {}

    xml_keys = {
        "gameAddress": "game_address",
        "banner": "banner",
        "homepage": "homepage",
        "admin": "admin",
        "team": "team",
        "location": "location",
    }
    for xml_key, key in xml_keys.items():
        element = root.find(xml_key)
        if element is not None:
            values[key] = element.text or ""

    fixed_ip = root.find("fixedIP")
    if fixed_ip is not None:
        values["fixed_ip"] = (fixed_ip.text or "").strip().lower() == "true"

    endpoints = [(e.text or "").strip() for e in root.iter("reporting")]
    if endpoints:
        values["endpoints"] = tuple(endpoints)

    return values


def write_settings_file(path: Path, values: dict[str, Any]) -> None:
    """Write a settings document based on default.toml, keeping its comments.

    The file is written next to the target and moved into place.
    """
    doc = tomlkit.parse(load_default_toml_text())
    for section, keys in _SECTIONS.items():
        for key in keys:
            if key not in values:
                continue
            value = values[key]
            if value is None:
                value = ""
            if isinstance(value, tuple):
                array = tomlkit.array()
                array.extend(value)
                value = array.multiline(True)
            doc[section][key] = value

    path = Path(path)
    new_path = path.with_name(path.name + ".new")
    if new_path.exists():
        new_path.unlink()
    new_path.write_text(tomlkit.dumps(doc), encoding="utf-8")
    os.replace(new_path, path)


def migrate_settings(settings_dir: Path) -> Path:
    """Ensure a TOML settings file exists, upgrading older formats first.

    Returns:
        Path of the TOML settings file.
    """
    settings_dir = Path(settings_dir)
    settings_dir.mkdir(parents=True, exist_ok=True)
    settings_path = settings_dir / SETTINGS_FILE
    legacy_path = settings_dir / LEGACY_SETTINGS_FILE
    legacy_xml_path = settings_dir / LEGACY_XML_SETTINGS_FILE
    description_path = settings_dir / DESCRIPTION_FILE

    if legacy_path.exists():
        values, description = parse_legacy_settings(legacy_path)
        endpoints = list(values.get("endpoints", ()))
        if LEGACY_FALLBACK_ENDPOINT not in endpoints:
            endpoints.append(LEGACY_FALLBACK_ENDPOINT)
        values["endpoints"] = tuple(endpoints)
        write_settings_file(settings_path, values)
        if not description_path.exists():
            description_path.write_text(description, encoding="utf-8")
        legacy_path.unlink()
        logger.info(f"Upgraded reporting settings file {legacy_path} -> {settings_path}")
    elif not settings_path.exists():
        if legacy_xml_path.exists():
            write_settings_file(settings_path, parse_legacy_xml_settings(legacy_xml_path))
            logger.info(f"Imported reporting settings from {legacy_xml_path}")
        else:
            settings_path.write_text(load_default_toml_text(), encoding="utf-8")
            logger.info(f"Wrote default reporting settings to {settings_path}")

    return settings_path


def load_reporting_settings(
    settings_dir: Path, args: argparse.Namespace | None = None
) -> ReportingSettings:
    """Load settings, identity token and description from a settings directory.

    Raises:
        DefaultConfigError: If default.toml cannot be loaded (fatal).
        tomllib.TOMLDecodeError: If the settings file has invalid TOML syntax.
        ConfigurationError: If configuration validation fails.
    """
    settings_dir = Path(settings_dir)
    settings_path = migrate_settings(settings_dir)

    config = load_default_config()
    toml_data = load_config_from_toml(settings_path)

    unknown = get_unknown_keys(toml_data)
    if unknown:
        logger.warning(f"Unknown keys in {settings_path}: {', '.join(unknown)}")

    config_data = flatten_toml_config(toml_data)
    if config_data:
        config = dataclass_replace(config, **config_data)

    if args is not None:
        config = merge_cli_args(config, args)

    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)

    return ReportingSettings(
        config=config,
        identity=load_identity(settings_dir / TOKEN_FILE),
        description=load_description(settings_dir / DESCRIPTION_FILE),
    )
