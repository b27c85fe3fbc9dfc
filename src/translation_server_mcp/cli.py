import argparse
import atexit
import os
import shlex
import signal
import socket
import subprocess
import sys
import time
from urllib.parse import urlparse

from translation_server_mcp import get_settings, logger, mcp, translation_health

_child: subprocess.Popen | None = None


def wait_for_port(host: str, port: int, timeout: float) -> bool:
    """Poll a TCP port until it accepts connections or the timeout elapses."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            with socket.create_connection((host, port), timeout=1):
                return True
        except OSError:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.3)


def _cleanup() -> None:
    global _child
    if _child is not None and _child.poll() is None:
        _child.terminate()
        try:
            _child.wait(timeout=5)
        except subprocess.TimeoutExpired:
            _child.kill()
    _child = None


def ensure_translation_server(url: str, command: str | None) -> None:
    """Make sure a translation-server answers at ``url``, spawning ``command`` if needed."""
    global _child
    parsed = urlparse(url)
    host = parsed.hostname or "127.0.0.1"
    port = parsed.port or 1969
    if wait_for_port(host, port, 1.0):
        return
    if not command:
        raise RuntimeError(
            f"translation-server not reachable at {url}; set TRANSLATION_SERVER_CMD to start it automatically"
        )
    logger.info(f"starting translation-server: {command}")
    _child = subprocess.Popen(
        shlex.split(command),
        env=os.environ.copy(),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
    )
    atexit.register(_cleanup)
    if not wait_for_port(host, port, 15.0):
        _cleanup()
        raise RuntimeError("translation-server did not start")


def _on_signal(signum, _frame):
    _cleanup()
    sys.exit(0)


def main():
    parser = argparse.ArgumentParser(description="Zotero translation-server Model Context Server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse"],
        default="stdio",
        help="Transport to use",
    )
    parser.add_argument(
        "--ensure-translation-server",
        action="store_true",
        help="Wait for (or spawn via TRANSLATION_SERVER_CMD) the translation server before serving",
    )
    args = parser.parse_args()

    if args.ensure_translation_server:
        signal.signal(signal.SIGTERM, _on_signal)
        signal.signal(signal.SIGINT, _on_signal)
        try:
            ensure_translation_server(get_settings().translation_server_url, os.getenv("TRANSLATION_SERVER_CMD"))
        except RuntimeError as e:
            logger.error(str(e))
            sys.exit(1)

    # Log a concise health summary at startup
    try:
        health = translation_health()
        start = health.find("```json")
        end = health.find("```", start + 1)
        if start != -1 and end != -1:
            logger.info(f"startup health: {health[start + 7 : end].strip()}")
        else:
            logger.info("startup health: ready")
    except Exception:  # noqa: BLE001
        logger.warning("startup health: failed to produce report")

    mcp.run(args.transport)


if __name__ == "__main__":
    main()
