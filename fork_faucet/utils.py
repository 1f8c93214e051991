"""Process, port and logging helpers."""

import logging
import os
import random
import socket
import time
from typing import Optional
from urllib.parse import urlparse

import coloredlogs
import psutil

logger = logging.getLogger(__name__)

#: Loggers that flood the console with every JSON-RPC request on INFO and DEBUG
NOISY_LOGGERS = (
    "web3.providers.HTTPProvider",
    "web3.manager.RequestManager",
    "urllib3.connectionpool",
)


def is_localhost_port_listening(port: int, host="localhost") -> bool:
    """Is some process accepting TCP connections on a local port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex((host, port)) == 0


def find_free_port(min_port: int = 20_000, max_port: int = 40_000, max_attempt: int = 20) -> int:
    """Pick a random local port nobody listens to.

    Another process may grab the port before we bind it,
    so callers retry the launch on failure.

    :raise RuntimeError:
        All probed ports were taken
    """
    assert min_port < max_port, f"Bad port range {min_port} - {max_port}"

    candidates = random.sample(range(min_port, max_port), k=min(max_attempt, max_port - min_port))
    for port in candidates:
        if not is_localhost_port_listening(port, "127.0.0.1"):
            return port
        logger.debug("Port %d taken", port)

    raise RuntimeError(f"No free port in range {min_port} - {max_port} after {len(candidates)} probes")


def _drain(stream, name: str, log_level: Optional[int]) -> bytes:
    data = stream.read() if stream else b""
    if log_level is not None:
        for line in data.decode("utf-8", errors="replace").splitlines():
            logger.log(log_level, "%s: %s", name, line)
    return data


def shutdown_hard(
    process: psutil.Popen,
    log_level: Optional[int] = None,
    block=True,
    block_timeout=30,
    check_port: Optional[int] = None,
) -> tuple[bytes, bytes]:
    """Kill a node process and collect what it printed.

    :param log_level:
        If set, write the process output to our log at this level

    :param block:
        Wait until ``check_port`` is free again

    :param check_port:
        The JSON-RPC port of the process

    :return:
        (stdout, stderr)
    """
    if process.poll() is None:
        process.kill()

    stdout = _drain(process.stdout, "stdout", log_level)
    stderr = _drain(process.stderr, "stderr", log_level)

    if block:
        assert check_port is not None, "Give check_port to block the execution"
        deadline = time.time() + block_timeout
        while is_localhost_port_listening(check_port):
            if time.time() > deadline:
                raise AssertionError(f"Node process still listening at port {check_port} after {block_timeout} seconds")
            time.sleep(0.1)

    return stdout, stderr


def get_url_domain(url: str) -> str:
    """Redact a URL down to its host.

    Fork URLs from Alchemy, Infura and others carry the API key in the path.
    """
    parsed = urlparse(url)
    if parsed.port in (80, 443, None):
        return parsed.hostname
    return f"{parsed.hostname}:{parsed.port}"


def setup_console_logging(default_log_level="warning", log_level: Optional[str] = None) -> logging.Logger:
    """Coloured log output for the command line.

    :param log_level:
        Explicit level. If not given, use ``LOG_LEVEL`` environment variable, then ``default_log_level``.

    :return:
        Root logger
    """
    level_name = (log_level or os.environ.get("LOG_LEVEL", default_log_level)).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {level_name}")

    coloredlogs.install(level=level, fmt="%(asctime)s %(name)-36s %(message)s", datefmt="%H:%M:%S")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger()
