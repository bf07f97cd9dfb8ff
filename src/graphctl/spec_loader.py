"""Topology loading from YAML.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.

Document shape::

    apiVersion: graphctl/v1
    kind: Topology
    metadata:
      name: web
    resources:
      - type: GlobalAddress
        name: lb-ip
        attributes: {}
      - type: ForwardingRule
        name: https-rule
        desiredState: present
        attributes:
          target: {ref: HttpsProxy/web-https}
          ip_address: {ref: GlobalAddress/lb-ip, field: address}
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .config import MAX_RESOURCES_PER_TOPOLOGY, MAX_TOPOLOGY_FILE_SIZE_BYTES
from .errors import PlanningError
from .models import ResourceSpec, declare

logger = logging.getLogger(__name__)

TOPOLOGY_SUFFIXES = (".yaml", ".yml")


class SpecLoadError(PlanningError):
    """Raised when a topology file cannot be read or has the wrong shape."""

    pass


class ResourceEntry(BaseModel):
    """One resource entry of a topology document, before schema validation."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: str
    name: str
    attributes: dict[str, Any] | None = None
    desired_state: str = Field("present", alias="desiredState")


class TopologyDocument(BaseModel):
    """A topology document."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    api_version: str = Field("graphctl/v1", alias="apiVersion")
    kind: Literal["Topology"] = "Topology"
    metadata: dict[str, Any] = Field(default_factory=dict)
    resources: list[ResourceEntry] = Field(default_factory=list)


def _read_document(path: Path) -> TopologyDocument:
    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat topology file {path}: {e}") from e

    if file_size > MAX_TOPOLOGY_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Topology file exceeds maximum size of {MAX_TOPOLOGY_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read topology file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Topology file must contain a YAML mapping: {path}")

    try:
        return TopologyDocument.model_validate(raw_data)
    except PydanticValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        raise SpecLoadError(f"Invalid topology document {path}:\n" + "\n".join(errors)) from e


def topology_files(path: Path) -> list[Path]:
    """A single file, or every YAML file of a directory in sorted order."""
    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.is_file() and p.suffix in TOPOLOGY_SUFFIXES)
        if not files:
            raise SpecLoadError(f"No topology files found in {path}")
        return files
    if not path.exists():
        raise SpecLoadError(f"Topology file not found: {path}")
    return [path]


def load_topology(path: Path) -> list[ResourceSpec]:
    """Load and validate every declaration under ``path``.

    Declaration order is file order, then entry order within each file.

    Raises:
        SpecLoadError: If a file cannot be read or is not a topology document.
        ValidationError: If a declaration fails its resource schema.
    """
    specs: list[ResourceSpec] = []
    for file in topology_files(path):
        document = _read_document(file)
        for entry in document.resources:
            specs.append(
                declare(entry.type, entry.name, entry.attributes, entry.desired_state)
            )
        logger.debug(
            "Loaded topology file",
            extra={"path": str(file), "resources": len(document.resources)},
        )

    if len(specs) > MAX_RESOURCES_PER_TOPOLOGY:
        raise SpecLoadError(
            f"Topology declares {len(specs)} resources, maximum is {MAX_RESOURCES_PER_TOPOLOGY}"
        )

    logger.info("Topology loaded", extra={"path": str(path), "resources": len(specs)})
    return specs
