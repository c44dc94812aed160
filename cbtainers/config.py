"""Cluster configuration.

``ClusterSpec`` is the immutable input of one provisioning run. It can be
built directly or resolved from TOML: ``~/.cbtainers/defaults.toml``
(global) and ``cbtainers.toml`` (project) are merged, then explicit
overrides such as CLI flags are applied on top.

Example ``cbtainers.toml``::

    [cluster]
    image = "couchbase/server:7.1.1"
    size = 3
    prefix = "cb-dev"
"""

from __future__ import annotations

import dataclasses
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cbtainers.exceptions import ConfigurationError
from cbtainers.ledger import PROXY_NAME

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".cbtainers" / "defaults.toml"
PROJECT_CONFIG_NAME = "cbtainers.toml"

DEFAULT_IMAGE = "couchbase/server:7.1.1"
DEFAULT_SIZE = 3
DEFAULT_USERNAME = "Administrator"
DEFAULT_PASSWORD = "password"
DEFAULT_PREFIX = "cb-dev"


@dataclass(frozen=True, slots=True)
class ClusterSpec:
    """What to provision.

    Every resource created for the cluster is named after ``prefix`` so
    that clusters with different prefixes never collide.

    Attributes:
        image: Couchbase Server image reference.
        size: Number of nodes.
        username: Cluster administrator username.
        password: Cluster administrator password.
        prefix: Resource name prefix.
        delete_only: Only tear down resources matching ``prefix``.
        readiness_host: Host the readiness probe targets; the proxy
            publishes the first node on this host.
    """

    image: str = DEFAULT_IMAGE
    size: int = DEFAULT_SIZE
    username: str = DEFAULT_USERNAME
    password: str = dataclasses.field(default=DEFAULT_PASSWORD, repr=False)
    prefix: str = DEFAULT_PREFIX
    delete_only: bool = False
    readiness_host: str = "localhost"

    def __post_init__(self) -> None:
        for name in ("image", "username", "password", "prefix", "readiness_host"):
            if not isinstance(getattr(self, name), str):
                raise ConfigurationError(f"{name} must be a string, got {type(getattr(self, name)).__name__}")
        if not isinstance(self.delete_only, bool):
            raise ConfigurationError(f"delete_only must be a boolean, got {self.delete_only!r}")
        # bool is an int subclass
        if not isinstance(self.size, int) or isinstance(self.size, bool):
            raise ConfigurationError(f"size must be an integer, got {self.size!r}")
        if not self.prefix:
            raise ConfigurationError("prefix must not be empty")
        if PROXY_NAME.startswith(self.prefix) or self.prefix.startswith(PROXY_NAME):
            raise ConfigurationError(
                f"prefix {self.prefix!r} overlaps the shared proxy name {PROXY_NAME!r}"
            )
        if not self.image:
            raise ConfigurationError("image must not be empty")
        if self.size < 1:
            raise ConfigurationError(f"size must be a positive integer, got {self.size}")

    @property
    def network_name(self) -> str:
        return f"{self.prefix}-network"

    @property
    def cluster_name(self) -> str:
        return f"{self.prefix}-cluster"

    def node_name(self, index: int) -> str:
        return f"{self.prefix}-{index}.docker"


_SPEC_FIELDS = frozenset(f.name for f in dataclasses.fields(ClusterSpec))


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("cluster", {})
    return merged


def resolve_spec(
    overrides: Mapping[str, Any] | None = None,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> ClusterSpec:
    """Build a ClusterSpec from config files plus explicit overrides.

    ``None`` values in ``overrides`` are ignored, so unset CLI flags fall
    through to the files and then to the defaults.
    """
    config = load_config(project_dir=project_dir, global_path=global_path)
    raw = dict(config["cluster"])
    raw.update({k: v for k, v in (overrides or {}).items() if v is not None})

    unknown = set(raw) - _SPEC_FIELDS
    if unknown:
        raise ConfigurationError(
            f"Unknown cluster setting(s): {', '.join(sorted(unknown))}. "
            f"Valid: {', '.join(sorted(_SPEC_FIELDS))}"
        )
    return ClusterSpec(**raw)
