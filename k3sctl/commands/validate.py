from pathlib import Path
from typing import Optional

import typer
import yaml
from jsonschema import ValidationError, validate

from ..config import Config
from ..modules.k3s.config import DEFAULT_CONFIG_PATHS, ConfigError, InstallerConfig
from .common import CONFIG_OPTION_HELP, allocate_nodes, console, topology_table

RESOURCES_SCHEMA = {
    "type": "object",
    "properties": {
        "cores": {"type": "integer", "minimum": 1},
        "memory": {"type": "integer", "minimum": 1},
        "os_disk_size": {"type": "integer", "minimum": 1},
        "data_disk_size": {"type": "integer", "minimum": 0},
    },
}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "sizing": {
            "type": "object",
            "properties": {
                "master_count": {"type": "integer", "minimum": 1},
                "worker_count": {"type": "integer", "minimum": 0},
                "master_vmid_start": {"type": "integer", "minimum": 1},
                "worker_vmid_start": {"type": "integer", "minimum": 1},
                "id_block_size": {"type": "integer", "minimum": 1},
                "name_prefix": {"type": "string", "minLength": 1},
                "network": {
                    "type": "object",
                    "properties": {
                        "net4_prefix": {"type": "string"},
                        "net6_prefix": {"type": "string"},
                        "ip_host_base": {"type": "integer", "minimum": 0},
                        "gateway4": {"type": "string"},
                        "gateway6": {"type": "string"},
                    },
                    "required": ["net4_prefix"],
                },
                "master_resources": RESOURCES_SCHEMA,
                "worker_resources": RESOURCES_SCHEMA,
            },
            "required": ["network"],
        },
        "ssh": {"type": "object"},
        "logging": {"type": "object"},
        "orchestrator": {"type": "object"},
        "hosts": {"type": "object", "additionalProperties": {"type": "string"}},
        "kubeconfig_out": {"type": "string"},
    },
    "required": ["sizing"],
}


def validate_cmd(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    show: bool = typer.Option(False, "--show", help="Print the resolved configuration"),
):
    """Validate a cluster config file and its node allocation."""
    if config_path is None:
        config_path = next((p for p in DEFAULT_CONFIG_PATHS if p.expanduser().exists()), None)
        if config_path is None:
            console.print("❌ No config file found. Use --config.")
            raise typer.Exit(code=1)

    path = config_path.expanduser()
    if not path.exists():
        console.print(f"❌ Config file not found: {path}")
        raise typer.Exit(code=1)

    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        console.print(f"❌ YAML parse error: {e}")
        raise typer.Exit(code=1)

    try:
        validate(instance=raw, schema=CONFIG_SCHEMA)
    except ValidationError as ve:
        location = "/".join(str(p) for p in ve.absolute_path) or "<root>"
        console.print(f"❌ YAML validation error at {location}: {ve.message}")
        raise typer.Exit(code=1)
    console.print("✅ YAML schema validated")

    try:
        config = InstallerConfig.from_dict(raw, source=str(path))
    except ConfigError as e:
        console.print(f"❌ {e}")
        raise typer.Exit(code=1)

    descriptors = allocate_nodes(config)
    console.print(
        f"✅ Allocation valid: {config.sizing.master_count} control-plane, "
        f"{config.sizing.worker_count} worker node(s)"
    )

    if show:
        console.print(Config.redact(config.model_dump(mode='json')))
        console.print(topology_table(descriptors))
