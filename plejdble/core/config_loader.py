"""Configuration loading and validation for the YAML gateway config."""

from __future__ import annotations

import json
import logging
import os
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from plejdble.core.crypto import parse_crypto_key
from plejdble.core.device_match import normalize_address
from plejdble.core.errors import ConfigLoadError, ConfigValidationError
from plejdble.core.log_config import LogConfig
from plejdble.core.model import (
    DEFAULT_CONNECTION_TIMEOUT,
    DEFAULT_WRITE_QUEUE_WAIT_TIME,
    DeviceDescriptor,
    GatewayConfig,
)

CONFIG_FILENAME = "config.yaml"
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


def _load_schema_validator() -> Any:
    schema_text = resources.files("plejdble.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "plejdble" / CONFIG_FILENAME


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ConfigValidationError(f"{context} must be boolean true/false")


def _build_devices(entries: list[dict[str, Any]], source: Path | str) -> tuple[DeviceDescriptor, ...]:
    devices: list[DeviceDescriptor] = []
    seen: set[int] = set()
    for entry in entries:
        device_id = int(entry["id"])
        if device_id in seen:
            raise ConfigValidationError(f"Duplicate device id {device_id} in {source}")
        seen.add(device_id)
        devices.append(
            DeviceDescriptor(
                id=device_id,
                serial_number=normalize_address(str(entry["serial_number"])),
                name=str(entry["name"]),
                dimmable=_normalize_bool(
                    entry.get("dimmable", False),
                    context=f"devices[{device_id}].dimmable",
                ),
            )
        )
    return tuple(devices)


def build_config(doc: dict[str, Any], source: Path | str = "<config>") -> GatewayConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    log_doc = doc.get("log", {})
    return GatewayConfig(
        crypto_key=parse_crypto_key(doc["crypto_key"]),
        devices=_build_devices(doc["devices"], source),
        connection_timeout=float(doc.get("connection_timeout", DEFAULT_CONNECTION_TIMEOUT)),
        write_queue_wait_time=int(doc.get("write_queue_wait_time", DEFAULT_WRITE_QUEUE_WAIT_TIME)),
        keep_alive=_normalize_bool(doc.get("keep_alive", True), context="keep_alive"),
        log=LogConfig(
            debug=_normalize_bool(log_doc.get("debug", False), context="log.debug"),
            verbose=_normalize_bool(log_doc.get("verbose", False), context="log.verbose"),
        ),
    )


def load_config(path: Path | None = None) -> GatewayConfig:
    config_path = path or default_config_path()
    LOGGER.debug("Loading config from %s", config_path)
    return build_config(_read_yaml(config_path), config_path)
