"""Background activity of the running daemon.

The companion child and the noise threads. Both are started once by
`testdaemon.apps.daemon_cli` and never stopped by the daemon itself.
"""

__all__ = [
    "CompanionManager",
    "NoiseGenerator",
]

from .companion import CompanionManager
from .noise import NoiseGenerator
