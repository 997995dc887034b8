"""CLI entrypoint for the supervisor test daemon.

Run:
    testdaemon --port 8000 [--verbose] [--crash] [--config settings.yaml]

Startup order: crash flag check, companion child, listener bind, greetings,
noise thread, then HTTP serving in the foreground. Whatever ends the run is
an `Outcome` handed to the terminator, which exits the process.
"""
from __future__ import annotations
import argparse
import sys
from typing import Any, Dict, List, Optional

from loguru import logger

from testdaemon.apps.server import bind_listener, create_app, serve
from testdaemon.core.config import ConfigError, LoggingSettings, Settings, load_settings
from testdaemon.core.outcome import Outcome, StartupError, Terminator, startup_failed, terminate
from testdaemon.live.companion import CompanionManager
from testdaemon.live.noise import NoiseGenerator


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Controllable test subject for process supervisors")
    p.add_argument("--port", type=int, default=None, help="port to listen on (default 8000, 0 = ephemeral)")
    p.add_argument("--crash", action="store_true", help="crash on start")
    p.add_argument("--verbose", action="store_true", help="flood stdout and stderr up to the cap, then exit 1")
    p.add_argument("--config", default=None, help="optional YAML settings file")
    return p.parse_args(argv)


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    # Only flags that were given, so file/env values survive otherwise.
    overrides: Dict[str, Any] = {}
    if args.port is not None:
        overrides["port"] = args.port
    if args.crash:
        overrides["crash"] = True
    if args.verbose:
        overrides["verbose"] = True
    return overrides


def setup_logging(cfg: LoggingSettings) -> None:
    logger.remove()
    logger.add(sys.stderr, level=cfg.level.upper(), format=cfg.format)


def greet(port: int) -> None:
    print(f"Hello on stdout; listening on port {port}", flush=True)
    print("Hello on stderr", file=sys.stderr, flush=True)


def start(settings: Settings, terminator: Terminator = terminate) -> Outcome:
    """Bring the daemon up and serve until the transport gives out.

    Raises StartupError when the running state cannot be reached.
    """
    if settings.crash:
        raise StartupError("fake crash on start")

    CompanionManager(settings.companion).launch()

    sock = bind_listener(settings.port)
    greet(sock.getsockname()[1])

    NoiseGenerator(settings.noise, terminator).start()
    return serve(create_app(terminator), sock)


def main(argv: Optional[List[str]] = None, terminator: Terminator = terminate) -> Outcome:
    args = parse_args(argv)
    try:
        settings = load_settings(args.config, cli_overrides(args))
    except ConfigError as e:
        outcome = startup_failed(f"invalid configuration: {e}")
    else:
        setup_logging(settings.logging)
        try:
            outcome = start(settings, terminator)
        except StartupError as e:
            outcome = startup_failed(str(e))
    terminator(outcome)
    return outcome


def run():
    main()


if __name__ == "__main__":  # pragma: no cover
    run()
