"""Files and directories on a host."""
import logging
import re
import shlex
from typing import Literal, Optional, Union

from pydantic import field_validator, model_validator

from .base import CommandSession, ExecutionResult, ModuleKind, ModuleParams

logger = logging.getLogger(__name__)

MODE_RE = re.compile(r"^[0-7]{3,4}$")


def _int_mode(value: int) -> str:
    """Octal text for an integer mode.

    ``mode: 644`` arrives as the integer 644 and ``mode: 0644`` as 420 (YAML
    octal). An integer is read as written when its digits are octal, unless
    its octal value is also a plain permission mode; then it is ambiguous.
    """
    written = str(value)
    as_octal = format(value, "o")
    if value <= 777 and set(written) <= set("01234567"):
        if value <= 0o777 and written != as_octal:
            raise ValueError(
                f"integer mode {value} is ambiguous, quote it as '{written}' or '0{as_octal}'"
            )
        return written.zfill(3)
    if value <= 0o7777:
        return as_octal
    raise ValueError(f"mode must be an octal permission string, got {value!r}")


class FileParams(ModuleParams):
    path: str
    state: Literal["file", "directory", "absent"] = "file"
    content: Optional[str] = None
    mode: Optional[Union[str, int]] = None

    @field_validator("mode", mode="before")
    @classmethod
    def _octal_mode(cls, value):
        if value is None:
            return None
        if isinstance(value, bool):
            raise ValueError(f"mode must be an octal permission string, got {value!r}")
        text = _int_mode(value) if isinstance(value, int) else str(value)
        text = text[1:] if len(text) == 4 and text.startswith("0") else text
        if not MODE_RE.match(text):
            raise ValueError(f"mode must be an octal permission string, got {value!r}")
        return text

    @model_validator(mode="after")
    def _content_only_for_files(self):
        if self.content is not None and self.state != "file":
            raise ValueError("content is only valid with state 'file'")
        return self


class FileModule(ModuleKind):
    """Ensure a file (with content and mode), a directory, or nothing exists at a path."""

    name = "file"
    Params = FileParams

    async def _current_mode(self, session: CommandSession, path: str) -> Optional[str]:
        result = await session.run(f"stat -c %a {shlex.quote(path)}")
        mode = result.stdout.strip()
        return mode if result.ok and mode else None

    async def _ensure_mode(self, session: CommandSession, params: FileParams) -> Optional[ExecutionResult]:
        """None when the mode already matches, otherwise the chmod outcome."""
        if params.mode is None:
            return None
        current = await self._current_mode(session, params.path)
        if current is not None and int(current, 8) == int(params.mode, 8):
            return None
        result = await session.run(f"chmod {params.mode} {shlex.quote(params.path)}")
        if not result.ok:
            return self.failure(f"chmod {params.mode} {params.path} failed", result)
        return ExecutionResult(changed=True)

    async def apply(self, session: CommandSession, params: FileParams) -> ExecutionResult:
        path = params.path
        payload = {"path": path, "state": params.state}
        quoted = shlex.quote(path)

        if params.state == "absent":
            if not await session.exists(path):
                return ExecutionResult(changed=False, payload=payload)
            result = await session.run(f"rm -rf {quoted}")
            if not result.ok:
                return self.failure(f"could not remove {path}", result)
            return ExecutionResult(changed=True, payload=payload)

        changed = False
        if params.state == "directory":
            if not await session.exists(path, "d"):
                result = await session.run(f"mkdir -p {quoted}")
                if not result.ok:
                    return self.failure(f"could not create directory {path}", result)
                changed = True
        else:
            current = await session.read_file(path)
            wanted = params.content if params.content is not None else (current or "")
            if current is None or current != wanted:
                mode = int(params.mode, 8) if params.mode else None
                await session.write_file(path, wanted, mode)
                logger.debug(f"Wrote {len(wanted)} bytes to {path}")
                changed = True

        mode_result = await self._ensure_mode(session, params)
        if mode_result is not None:
            if mode_result.failed:
                return mode_result
            changed = True
        if params.mode is not None:
            payload["mode"] = params.mode
        return ExecutionResult(changed=changed, payload=payload)
