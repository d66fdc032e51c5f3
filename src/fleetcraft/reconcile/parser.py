"""Parser for desired state documents.

Converts dict/YAML input to a DesiredState:

    variables:
      region:
        default: eu-west-1
      env: {}                 # required, no default
    resources:
      - type: net_vpc
        name: main
        attributes:
          cidr: 10.0.0.0/16
          region: ${var.region}
      - type: net_subnet
        name: a
        attributes:
          vpc_id: ${net_vpc.main.id}
        depends_on: [net_vpc.main]
    outputs:
      vpc_id: ${net_vpc.main.id}
"""
import logging
import re
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from ..errors import ParseError
from ..values import ResourceRef, parse_value
from .schema import DesiredState, Resource, Variable

logger = logging.getLogger(__name__)

NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DesiredStateParser:
    """Parse desired state from dict/YAML format."""

    def load_file(self, path: Union[str, Path],
                  values: Optional[Mapping[str, Any]] = None) -> DesiredState:
        """Read and parse a YAML desired state file."""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = yaml.safe_load(f)
        except FileNotFoundError:
            raise ParseError(f"Desired state file not found: {path}")
        except yaml.YAMLError as e:
            raise ParseError(f"Invalid YAML in {path}: {e}")
        logger.debug(f"Loaded desired state from {path}")
        return self.parse(document or {}, values)

    def parse(self, config: Mapping[str, Any],
              values: Optional[Mapping[str, Any]] = None) -> DesiredState:
        """
        Parse a desired state document.

        Args:
            config: Dict with variables, resources and outputs
            values: Variable values supplied by the caller

        Returns:
            DesiredState object

        Raises:
            ParseError: If the document is malformed
        """
        if not isinstance(config, Mapping):
            raise ParseError("Desired state must be a mapping")

        unknown = set(config) - {"variables", "resources", "outputs"}
        if unknown:
            raise ParseError(f"Unknown top-level keys: {', '.join(sorted(unknown))}")

        variables = self._parse_variables(config.get("variables") or {})
        resources = [
            self._parse_resource(i, entry)
            for i, entry in enumerate(config.get("resources") or [])
        ]

        outputs_config = config.get("outputs") or {}
        if not isinstance(outputs_config, Mapping):
            raise ParseError("'outputs' must be a mapping")
        outputs = {str(k): parse_value(v) for k, v in outputs_config.items()}

        return DesiredState(
            resources=resources,
            variables=variables,
            outputs=outputs,
            values=dict(values or {}),
        )

    def _parse_variables(self, config: Any) -> dict[str, Variable]:
        if not isinstance(config, Mapping):
            raise ParseError("'variables' must be a mapping")

        variables = {}
        for name, spec in config.items():
            name = str(name)
            if not NAME_RE.match(name):
                raise ParseError(f"Invalid variable name: {name}")
            if isinstance(spec, Mapping):
                variables[name] = Variable(
                    name=name,
                    default=spec.get("default"),
                    has_default="default" in spec,
                    description=str(spec.get("description", "")),
                )
            elif spec is None:
                variables[name] = Variable(name=name)
            else:
                # Shorthand: a scalar is the default
                variables[name] = Variable(name=name, default=spec, has_default=True)
        return variables

    def _parse_resource(self, index: int, entry: Any) -> Resource:
        if not isinstance(entry, Mapping):
            raise ParseError(f"Resource #{index + 1} must be a mapping")

        resource_type = entry.get("type")
        name = entry.get("name")
        if not resource_type or not name:
            raise ParseError(f"Resource #{index + 1} is missing 'type' or 'name'")
        resource_type, name = str(resource_type), str(name)
        for part in (resource_type, name):
            if not NAME_RE.match(part):
                raise ParseError(f"Invalid resource identifier '{part}' in {resource_type}.{name}")

        attributes_config = entry.get("attributes") or {}
        if not isinstance(attributes_config, Mapping):
            raise ParseError(f"Attributes of {resource_type}.{name} must be a mapping")
        attributes = {str(k): parse_value(v) for k, v in attributes_config.items()}
        if "id" in attributes:
            raise ParseError(f"{resource_type}.{name}: 'id' is assigned by the provider")

        depends_on_config = entry.get("depends_on") or []
        if isinstance(depends_on_config, str):
            depends_on_config = [depends_on_config]
        depends_on = tuple(ResourceRef.parse(d) for d in depends_on_config)

        return Resource(
            type=resource_type,
            name=name,
            attributes=attributes,
            depends_on=depends_on,
            index=index,
        )
