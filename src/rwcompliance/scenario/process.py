"""Running external senders and receivers as child processes."""

import os
import signal
import subprocess
import threading
from typing import Callable, Dict, List, Optional, Sequence

from rwcompliance.utils.logging import get_logger

log = get_logger(__name__)


def _signal_group(process: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(os.getpgid(process.pid), sig)
    except ProcessLookupError:
        pass


def run_command(
    argv: Sequence[str],
    stop: threading.Event,
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    grace_seconds: float = 10.0,
    show_output: bool = False,
    poll_interval: float = 0.1,
) -> int:
    """Run argv until it exits or stop is set.

    The child gets its own session so that everything it forks can be
    signalled together. On stop the whole group receives SIGTERM, and
    SIGKILL if it is still alive after grace_seconds.

    Args:
        argv: Program and arguments.
        stop: Set by the caller to end the process.
        cwd: Working directory for the child.
        env: Extra environment variables, merged over the current ones.
        grace_seconds: Time between SIGTERM and SIGKILL.
        show_output: Inherit stdout/stderr instead of discarding them.
        poll_interval: How often to check for exit and stop.

    Returns:
        The process exit code (negative for a signal, as in subprocess).
    """
    child_env = dict(os.environ)
    if env:
        child_env.update(env)
    output = None if show_output else subprocess.DEVNULL

    process = subprocess.Popen(
        list(argv),
        cwd=cwd,
        env=child_env,
        stdout=output,
        stderr=output,
        start_new_session=True,
    )
    log.info("process_started", argv=list(argv), pid=process.pid)

    while process.poll() is None:
        if stop.wait(poll_interval):
            break

    if process.poll() is None:
        log.info("process_stopping", pid=process.pid)
        _signal_group(process, signal.SIGTERM)
        try:
            process.wait(timeout=grace_seconds)
        except subprocess.TimeoutExpired:
            log.warning("process_kill", pid=process.pid, grace_seconds=grace_seconds)
            _signal_group(process, signal.SIGKILL)
            process.wait()

    log.info("process_exited", pid=process.pid, returncode=process.returncode)
    return process.returncode


def command_launcher(
    build_argv: Callable[..., List[str]],
    grace_seconds: float = 10.0,
    show_output: bool = False,
) -> Callable:
    """Turn an argv factory into a launcher for run_scenario.

    build_argv receives the LaunchOptions and returns the command line, for
    example one pointing at a config file it just wrote.
    """

    def launch(options, stop: threading.Event) -> None:
        argv = build_argv(options)
        returncode = run_command(
            argv, stop, grace_seconds=grace_seconds, show_output=show_output
        )
        if returncode not in (0, -signal.SIGTERM) and not stop.is_set():
            raise RuntimeError(f"{argv[0]} exited with code {returncode}")

    return launch
