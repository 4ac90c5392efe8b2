"""Ansible playbook catalog and execution."""

import asyncio
from collections.abc import Iterable
from enum import StrEnum
from ipaddress import IPv4Address

from pydantic import BaseModel, ConfigDict
import structlog

from cloud_init_ext.errors import MissingPlaybook, PlaybookFailed, ProcessSpawnError, ProcessTimeout

logger = structlog.get_logger(__name__)

MAX_LOG_LENGTH = 1000


class PlaybookFunction(StrEnum):
    """Provisioning roles a playbook can fulfil."""

    BASE_CONFIG = "base_config"  # network / IP configuration
    METRICS_AGENT = "metrics_agent"  # prometheus node exporter


# Order in which every new node is configured
REQUIRED_FUNCTIONS: tuple[PlaybookFunction, ...] = (
    PlaybookFunction.BASE_CONFIG,
    PlaybookFunction.METRICS_AGENT,
)


class Playbook(BaseModel):
    """A playbook file providing one provisioning function."""

    model_config = ConfigDict(frozen=True)

    function: PlaybookFunction
    path: str


class PlaybookCatalog:
    """Read-only mapping of function to playbook, built once at startup."""

    def __init__(self, playbooks: Iterable[Playbook]):
        entries: dict[PlaybookFunction, Playbook] = {}
        for playbook in playbooks:
            if playbook.function in entries:
                raise ValueError(f"Duplicate playbook for function {playbook.function.value!r}")
            entries[playbook.function] = playbook
        self._entries = entries

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, function: PlaybookFunction) -> Playbook:
        """Get the playbook for a function.

        Raises:
            MissingPlaybook: No playbook is configured for the function
        """
        try:
            return self._entries[function]
        except KeyError:
            raise MissingPlaybook(function) from None

    def validate(self, required: Iterable[PlaybookFunction] = REQUIRED_FUNCTIONS) -> None:
        """Fail fast at startup when a required function has no playbook."""
        for function in required:
            self.lookup(function)


class PlaybookRunner:
    """Runs one playbook at a time against a target address.

    The runner waits for ``ansible-playbook`` to exit. Only the exit status
    decides success; output is captured for the logs and nothing else.
    """

    def __init__(self, timeout: float, executable: str = "ansible-playbook"):
        self.timeout = timeout
        self.executable = executable

    def build_command(self, playbook: Playbook, target: IPv4Address, credential: str) -> list[str]:
        return [
            self.executable,
            playbook.path,
            "--extra-vars",
            f"target={target}",
            "--private-key",
            credential,
        ]

    async def run(self, playbook: Playbook, target: IPv4Address, credential: str) -> None:
        """Run a playbook and wait for it to finish.

        Args:
            playbook: Catalog entry to execute
            target: Address of the node being configured
            credential: Path of the SSH private key used to reach the node

        Raises:
            ProcessSpawnError: The executable could not be launched
            ProcessTimeout: The playbook ran longer than the configured timeout
            PlaybookFailed: The playbook exited with a non-zero status
        """
        cmd = self.build_command(playbook, target, credential)
        log = logger.bind(playbook=playbook.path, function=playbook.function.value, target=str(target))

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            log.error("ansible_playbook_spawn_failed", error=str(e), error_type=type(e).__name__)
            raise ProcessSpawnError(self.executable, str(e)) from e

        log.info("ansible_playbook_start", pid=process.pid)
        loop = asyncio.get_running_loop()
        start = loop.time()

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError:
            log.error("ansible_playbook_timeout", timeout=self.timeout)
            await _kill(process)
            raise ProcessTimeout(playbook.path, self.timeout) from None
        except asyncio.CancelledError:
            log.warning("ansible_playbook_cancelled")
            await _kill(process)
            raise

        log.info(
            "ansible_playbook_complete",
            exit_code=process.returncode,
            duration_sec=round(loop.time() - start, 2),
        )

        if process.returncode != 0:
            # Tail is where ansible reports the failing task
            log.error(
                "ansible_playbook_failed",
                exit_code=process.returncode,
                stdout_tail=_tail(stdout),
                stderr_tail=_tail(stderr),
            )
            raise PlaybookFailed(playbook.path, process.returncode)


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()


def _tail(output: bytes | None) -> str:
    if not output:
        return ""
    return output[-MAX_LOG_LENGTH:].decode(errors="replace")
