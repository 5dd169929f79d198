"""BFE data plane process handle."""

from __future__ import annotations

import asyncio
import signal
from dataclasses import dataclass
from enum import StrEnum

import structlog

from ingress_bfe.errors import DataPlaneStartError

_log = structlog.get_logger(component="controller.dataplane")

DEFAULT_BINARY = "/usr/local/bin/bfe/bfe"
DEFAULT_CONFIG_PATH = "/etc/bfe/bfe/conf"


class ExitKind(StrEnum):
    CLEAN = "clean"
    ABNORMAL = "abnormal"
    SIGNALED = "signaled"


@dataclass(frozen=True)
class DataPlaneExit:
    returncode: int
    kind: ExitKind

    @property
    def signal(self) -> int | None:
        return -self.returncode if self.kind is ExitKind.SIGNALED else None


def classify_exit(returncode: int) -> DataPlaneExit:
    """Negative return codes are deaths by signal (asyncio convention)."""
    if returncode == 0:
        return DataPlaneExit(returncode, ExitKind.CLEAN)
    if returncode < 0:
        return DataPlaneExit(returncode, ExitKind.SIGNALED)
    return DataPlaneExit(returncode, ExitKind.ABNORMAL)


class DataPlaneProcess:
    """Runs ``<binary> -c <config_path>`` in its own process group.

    stdout and stderr are inherited so the data plane logs straight to the
    container output.
    """

    def __init__(
        self,
        binary: str = DEFAULT_BINARY,
        config_path: str = DEFAULT_CONFIG_PATH,
        extra_args: tuple[str, ...] = (),
    ) -> None:
        self.binary = binary
        self.config_path = config_path
        self._extra_args = extra_args
        self._proc: asyncio.subprocess.Process | None = None
        self._exit: DataPlaneExit | None = None

    def command(self) -> list[str]:
        return [self.binary, "-c", self.config_path, *self._extra_args]

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> None:
        if self.is_running():
            raise DataPlaneStartError(f"data plane already running (pid {self.pid})")
        cmd = self.command()
        try:
            self._proc = await asyncio.create_subprocess_exec(*cmd, process_group=0)
        except OSError as exc:
            raise DataPlaneStartError(f"could not start {cmd[0]}: {exc}") from exc
        self._exit = None
        _log.info("data_plane_started", pid=self._proc.pid, command=cmd)

    async def wait(self) -> DataPlaneExit:
        """Wait for the process to exit and classify how it ended."""
        if self._proc is None:
            raise DataPlaneStartError("data plane was never started")
        returncode = await self._proc.wait()
        result = classify_exit(returncode)
        if self._exit is None:
            self._exit = result
            log = _log.info if result.kind is ExitKind.CLEAN else _log.warning
            log("data_plane_exited", pid=self._proc.pid, returncode=returncode, kind=str(result.kind))
        return result

    def send_signal(self, sig: int) -> None:
        if self._proc is None:
            raise ProcessLookupError("data plane was never started")
        self._proc.send_signal(sig)

    async def stop(self) -> DataPlaneExit | None:
        """SIGTERM the process and wait for it. Signal failures propagate."""
        if self._proc is None:
            return None
        if self.is_running():
            _log.info("stopping_data_plane", pid=self._proc.pid)
            self.send_signal(signal.SIGTERM)
        return await self.wait()
