"""Host inventory management from YAML configuration."""
import fnmatch
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

import yaml

from .errors import ParseError
from .state import StateSnapshot

logger = logging.getLogger(__name__)

# Host keys that are not connection parameters
_HOST_KEYS = {"address", "vars", "facts", "groups"}


@dataclass(frozen=True)
class Host:
    """One managed host."""
    alias: str
    address: str
    connection_params: dict[str, Any] = field(default_factory=dict)
    groups: frozenset = frozenset()
    variables: dict[str, Any] = field(default_factory=dict)
    facts: dict[str, Any] = field(default_factory=dict)

    @property
    def connection(self) -> str:
        return str(self.connection_params.get("connection", "ssh"))

    def describe(self) -> dict[str, Any]:
        """Value bound to ``host`` in action scopes."""
        return {
            "alias": self.alias,
            "address": self.address,
            "groups": sorted(self.groups),
        }


class HostInventory:
    """Hosts and groups loaded from YAML config.

    ```yaml
    defaults:
      user: deploy
      port: 22
    hosts:
      web1:
        address: 10.0.0.5
        vars:
          role: frontend
      db1:
        address: 10.0.0.9
        connection: local
    groups:
      web:
        - web1
      databases:
        - db1
    ```

    Every host is also a member of the implicit ``all`` group.
    """

    def __init__(self, hosts: Iterable[Host]):
        self._hosts: dict[str, Host] = {}
        for host in hosts:
            self._hosts[host.alias] = host

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "HostInventory":
        """Load an inventory YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ParseError(f"Inventory file not found: {path}")
        except yaml.YAMLError as e:
            raise ParseError(f"Invalid YAML in {path}: {e}")
        logger.debug(f"Loaded inventory from {path}")
        return cls.from_mapping(config)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "HostInventory":
        """Build an inventory from ``{defaults, hosts, groups}``."""
        if not isinstance(config, Mapping):
            raise ParseError("Inventory must be a mapping")

        defaults = dict(config.get("defaults") or {})
        hosts_config = config.get("hosts") or {}
        groups_config = config.get("groups") or {}
        if not isinstance(hosts_config, Mapping):
            raise ParseError("Inventory 'hosts' must be a mapping of alias to host")
        if not isinstance(groups_config, Mapping):
            raise ParseError("Inventory 'groups' must be a mapping of group to aliases")

        memberships: dict[str, set[str]] = {str(alias): {"all"} for alias in hosts_config}
        for group_name, members in groups_config.items():
            if not isinstance(members, list):
                logger.warning(f"Group '{group_name}' should be a list of host aliases")
                continue
            for alias in members:
                if alias not in memberships:
                    logger.warning(f"Group '{group_name}' references unknown host: {alias}")
                    continue
                memberships[alias].add(str(group_name))

        hosts = []
        for alias, host_config in hosts_config.items():
            alias = str(alias)
            host_config = dict(host_config or {})
            params = {**defaults, **{k: v for k, v in host_config.items() if k not in _HOST_KEYS}}
            for group_name in host_config.get("groups") or []:
                memberships[alias].add(str(group_name))
            hosts.append(Host(
                alias=alias,
                address=str(host_config.get("address") or alias),
                connection_params=params,
                groups=frozenset(memberships[alias]),
                variables=dict(host_config.get("vars") or {}),
                facts=dict(host_config.get("facts") or {}),
            ))
        return cls(hosts)

    def __len__(self) -> int:
        return len(self._hosts)

    def __contains__(self, alias: object) -> bool:
        return alias in self._hosts

    def aliases(self) -> list[str]:
        """Get all host aliases."""
        return list(self._hosts)

    def get(self, alias: str) -> Host:
        if alias not in self._hosts:
            raise KeyError(f"Unknown host: {alias}")
        return self._hosts[alias]

    def hosts(self) -> list[Host]:
        return list(self._hosts.values())

    def group_names(self) -> list[str]:
        """Get all group names, ``all`` included."""
        names: list[str] = []
        for host in self._hosts.values():
            for group in sorted(host.groups):
                if group not in names:
                    names.append(group)
        return names

    def group_members(self, group_name: str) -> list[str]:
        return [h.alias for h in self._hosts.values() if group_name in h.groups]

    def _match_term(self, term: str) -> set[str]:
        if term in self._hosts:
            return {term}
        members = set(self.group_members(term))
        if members:
            return members
        if any(ch in term for ch in "*?["):
            return {
                h.alias for h in self._hosts.values()
                if fnmatch.fnmatchcase(h.alias, term)
                or any(fnmatch.fnmatchcase(g, term) for g in h.groups)
            }
        return set()

    def match(self, pattern: str) -> list[Host]:
        """Hosts selected by a pattern, in inventory order.

        ``all``, a group name, an alias or a glob; ``a:b`` is a union,
        ``!x`` excludes and ``&x`` intersects.
        """
        selected: set[str] = set()
        excluded: set[str] = set()
        required: Optional[set[str]] = None
        for term in (t.strip() for t in str(pattern).replace(",", ":").split(":")):
            if not term:
                continue
            if term.startswith("!"):
                excluded |= self._match_term(term[1:])
            elif term.startswith("&"):
                found = self._match_term(term[1:])
                required = found if required is None else required & found
            else:
                selected |= self._match_term(term)
        if required is not None:
            selected &= required
        selected -= excluded
        return [h for h in self._hosts.values() if h.alias in selected]

    def limit(self, pattern: Optional[str]) -> "HostInventory":
        """A new inventory restricted to hosts matching ``pattern``."""
        if not pattern:
            return self
        return HostInventory(self.match(pattern))


def hosts_from_snapshot(
    snapshot: StateSnapshot,
    resource_type: str,
    address_attribute: str = "address",
    groups: Iterable[str] = (),
    alias_attribute: Optional[str] = None,
    defaults: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """Turn recorded resources into an inventory mapping.

    Every resource of ``resource_type`` becomes a host whose address is the
    given attribute; the resource's attributes are available to actions as
    ``resource``.
    """
    hosts: dict[str, Any] = {}
    for state in snapshot:
        if state.ref.type != resource_type:
            continue
        address = state.attributes.get(address_attribute)
        if address in (None, ""):
            logger.warning(f"{state.ref} has no '{address_attribute}', not added to inventory")
            continue
        alias = str(state.attributes.get(alias_attribute, state.ref.name)) if alias_attribute \
            else state.ref.name
        hosts[alias] = {
            "address": str(address),
            "vars": {"resource": {**state.attributes, "id": state.id}},
        }

    mapping: dict[str, Any] = {
        "hosts": hosts,
        "groups": {str(group): list(hosts) for group in groups},
    }
    if defaults:
        mapping["defaults"] = dict(defaults)
    return mapping
