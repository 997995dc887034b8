import shlex
import subprocess
from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from testdaemon.core.config import CompanionSettings
from testdaemon.core.outcome import StartupError


@dataclass
class CompanionProcess:
    """
    The auxiliary child left running for the supervisor to discover and reap.
    """
    command: List[str]
    pid: int
    command_str: str = ""
    # Popen handle; kept so the child is not reaped early, never waited on.
    _process_handle: Optional[subprocess.Popen] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if not self.command_str and self.command:
            self.command_str = shlex.join(self.command)


class CompanionManager:
    """
    Launches exactly one long-running child and then forgets about it: no
    waiting, no monitoring, no restart, no termination.
    """
    def __init__(self, settings: CompanionSettings):
        self.settings = settings
        self.process: Optional[CompanionProcess] = None

    def launch(self) -> CompanionProcess:
        if self.process is not None:
            raise StartupError(f"companion already running (pid {self.process.pid})")

        command = list(self.settings.command)
        try:
            # stdio is inherited so the child's output lands in the supervisor's capture.
            handle = subprocess.Popen(command)
        except OSError as e:
            raise StartupError(f"error running child: {e}") from e

        self.process = CompanionProcess(command=command, pid=handle.pid, _process_handle=handle)
        logger.debug(f"Companion started (PID: {handle.pid}): {self.process.command_str}")
        return self.process
