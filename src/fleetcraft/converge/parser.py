"""Parser for playbooks.

A playbook is a list of plays (or a mapping with a ``plays`` list):

    - name: web servers
      hosts: web:!maintenance
      gather_facts: true
      vars:
        pkg: nginx
      actions:
        - name: install nginx
          module: package
          params: {name: "${pkg}", state: present}
          when: facts.os_family == 'debian'
          notify: restart nginx
          register: nginx_install
      handlers:
        - name: restart nginx
          module: service
          params: {name: nginx, state: restarted}
"""
import logging
import re
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from ..errors import ParseError
from .schema import Action, Play, Playbook

logger = logging.getLogger(__name__)

REGISTER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_PLAY_KEYS = {"name", "hosts", "vars", "gather_facts", "actions", "tasks", "handlers"}
_ACTION_KEYS = {"name", "module", "params", "parameters", "when", "notify", "register", "loop"}


class PlaybookParser:
    """Parse playbooks from dict/YAML format."""

    def load_file(self, path: Union[str, Path]) -> Playbook:
        """Read and parse a YAML playbook file."""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = yaml.safe_load(f)
        except FileNotFoundError:
            raise ParseError(f"Playbook file not found: {path}")
        except yaml.YAMLError as e:
            raise ParseError(f"Invalid YAML in {path}: {e}")
        logger.debug(f"Loaded playbook from {path}")
        return self.parse(document or [])

    def parse(self, document: Any) -> Playbook:
        """
        Parse a playbook document.

        Raises:
            ParseError: If the document is malformed
        """
        if isinstance(document, Mapping):
            document = document.get("plays") or []
        if not isinstance(document, list):
            raise ParseError("Playbook must be a list of plays")
        return Playbook(plays=[self._parse_play(i, entry) for i, entry in enumerate(document)])

    def _parse_play(self, index: int, entry: Any) -> Play:
        if not isinstance(entry, Mapping):
            raise ParseError(f"Play #{index + 1} must be a mapping")
        name = str(entry.get("name") or f"play {index + 1}")

        unknown = set(entry) - _PLAY_KEYS
        if unknown:
            raise ParseError(f"Play '{name}': unknown keys {', '.join(sorted(unknown))}")

        variables = entry.get("vars") or {}
        if not isinstance(variables, Mapping):
            raise ParseError(f"Play '{name}': 'vars' must be a mapping")

        actions = entry.get("actions", entry.get("tasks")) or []
        handlers = entry.get("handlers") or []
        for key, value in (("actions", actions), ("handlers", handlers)):
            if not isinstance(value, list):
                raise ParseError(f"Play '{name}': '{key}' must be a list")

        return Play(
            name=name,
            hosts=str(entry.get("hosts") or "all"),
            actions=[self._parse_action(name, i, a, handler=False) for i, a in enumerate(actions)],
            handlers=[self._parse_action(name, i, h, handler=True) for i, h in enumerate(handlers)],
            variables=dict(variables),
            gather_facts=bool(entry.get("gather_facts", False)),
        )

    def _parse_action(self, play: str, index: int, entry: Any, handler: bool) -> Action:
        kind = "Handler" if handler else "Action"
        if not isinstance(entry, Mapping):
            raise ParseError(f"Play '{play}': {kind.lower()} #{index + 1} must be a mapping")

        module = entry.get("module")
        name = str(entry.get("name") or module or f"{kind.lower()} {index + 1}")
        if not module:
            raise ParseError(f"Play '{play}': {kind} '{name}' has no module")

        unknown = set(entry) - _ACTION_KEYS
        if unknown:
            raise ParseError(f"{kind} '{name}': unknown keys {', '.join(sorted(unknown))}")

        params = entry.get("params", entry.get("parameters")) or {}
        if not isinstance(params, Mapping):
            raise ParseError(f"{kind} '{name}': 'params' must be a mapping")

        notify = entry.get("notify") or []
        if isinstance(notify, str):
            notify = [notify]
        if not isinstance(notify, list):
            raise ParseError(f"{kind} '{name}': 'notify' must be a string or a list")

        register: Optional[str] = entry.get("register")
        if register is not None and not REGISTER_RE.match(str(register)):
            raise ParseError(f"{kind} '{name}': invalid register name '{register}'")

        condition = entry.get("when")
        if isinstance(condition, bool):
            condition = "true" if condition else "false"

        return Action(
            name=name,
            module=str(module),
            parameters=dict(params),
            condition=str(condition) if condition is not None else None,
            notifies=tuple(dict.fromkeys(str(n) for n in notify)),
            register=str(register) if register is not None else None,
            loop=entry.get("loop"),
            handler=handler,
        )
