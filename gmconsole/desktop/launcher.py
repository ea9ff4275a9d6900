"""Desktop launcher that runs the GM console API and opens it in a PyWebView window."""

from __future__ import annotations

import argparse
import logging
import os
import subprocess
import sys
import time
import webbrowser
from pathlib import Path
from urllib import error, request
from urllib.parse import quote

from gmconsole.backend.security import generate_token

ROOT_DIR = Path(__file__).resolve().parents[2]
APP_TARGET = "gmconsole.backend.api:app"

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="GM console launcher")
    parser.add_argument("--server", default="http://127.0.0.1:8000")
    parser.add_argument("--encounter-id", default="")
    parser.add_argument("--token", default="")
    parser.add_argument("--database-url", default="")
    parser.add_argument("--start-server", action="store_true")
    parser.add_argument("--browser", action="store_true", help="open the system browser instead of a PyWebView window")
    parser.add_argument("--generate-token", action="store_true", help="print a new value for GMCONSOLE_GM_TOKEN and exit")
    return parser.parse_args(argv)


def split_server_url(server_url: str) -> tuple[str, str]:
    host_port = server_url.removeprefix("http://").rstrip("/")
    if ":" not in host_port:
        return host_port, "80"
    host, port = host_port.split(":", maxsplit=1)
    return host, port


def wait_for_server(server_url: str, timeout_s: float = 8.0) -> bool:
    start = time.time()
    while time.time() - start < timeout_s:
        try:
            with request.urlopen(f"{server_url}/api/encounters", timeout=0.5) as response:
                if int(response.status) < 500:
                    return True
        except (error.URLError, TimeoutError):
            pass
        time.sleep(0.2)
    return False


def server_command(server_url: str) -> list[str]:
    host, port = split_server_url(server_url)
    return [sys.executable, "-m", "uvicorn", APP_TARGET, "--host", host, "--port", port]


def maybe_start_server(server_url: str, database_url: str = "", gm_token: str = "") -> subprocess.Popen[str] | None:
    env = os.environ.copy()
    if database_url:
        env["GMCONSOLE_DATABASE_URL"] = database_url
    if gm_token:
        env["GMCONSOLE_GM_TOKEN"] = gm_token
    process = subprocess.Popen(server_command(server_url), cwd=str(ROOT_DIR), env=env)
    if wait_for_server(server_url):
        return process
    process.terminate()
    return None


def build_console_url(server: str, encounter_id: str) -> str:
    """Interactive API docs, or the state of one encounter when given."""
    server = server.rstrip("/")
    if not encounter_id:
        return f"{server}/docs"
    return f"{server}/api/encounters/{quote(encounter_id, safe='')}"


def open_console(url: str, title: str, use_browser: bool = False) -> None:
    if use_browser:
        webbrowser.open(url)
        return
    try:
        import webview
    except ImportError:
        logger.info("PyWebView not installed, opening %s in the browser", url)
        webbrowser.open(url)
        return
    webview.create_window(title, url=url, width=1400, height=900)
    webview.start()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.generate_token:
        print(generate_token())
        return 0
    logging.basicConfig(level=logging.INFO)

    server_process: subprocess.Popen[str] | None = None
    if args.start_server:
        server_process = maybe_start_server(args.server, database_url=args.database_url, gm_token=args.token)
        if server_process is None:
            print("Server could not be started.", file=sys.stderr)
            return 1
    elif not wait_for_server(args.server):
        print("Server unreachable. Use --start-server or run uvicorn manually.", file=sys.stderr)
        return 1

    title = "GM Console" if not args.encounter_id else f"GM Console - {args.encounter_id}"
    try:
        open_console(build_console_url(args.server, args.encounter_id), title=title, use_browser=args.browser)
    finally:
        if server_process is not None:
            server_process.terminate()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
