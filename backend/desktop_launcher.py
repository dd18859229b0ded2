from __future__ import annotations

import argparse
import logging
import os
import socket
import threading
import time
import urllib.request
import webbrowser
from pathlib import Path

import uvicorn
from fastapi import HTTPException
from fastapi.responses import FileResponse

from dragon_faith.main import app as api_app

logger = logging.getLogger("dragon_faith.launcher")


def _resolve_frontend_dist() -> Path | None:
    candidates: list[Path] = []
    env_path = os.getenv("DRAGON_FAITH_FRONTEND_DIST", "").strip()
    if env_path:
        candidates.append(Path(env_path))
    repo_root = Path(__file__).resolve().parent.parent
    candidates.extend([repo_root / "frontend" / "dist", Path.cwd() / "dist"])

    for candidate in candidates:
        if (candidate / "index.html").is_file():
            return candidate
    return None


def _attach_frontend_routes(frontend_dist: Path) -> None:
    index_file = frontend_dist / "index.html"
    base_dir = frontend_dist.resolve()

    @api_app.get("/", include_in_schema=False)
    def serve_root() -> FileResponse:
        return FileResponse(index_file)

    @api_app.get("/{full_path:path}", include_in_schema=False)
    def serve_frontend(full_path: str) -> FileResponse:
        path = full_path.strip("/")
        if path.startswith(("api/", "docs")) or path in {"api", "health", "openapi.json", "redoc"}:
            raise HTTPException(status_code=404, detail="Not Found")
        target = (base_dir / path).resolve()
        if path and target.is_relative_to(base_dir) and target.is_file():
            return FileResponse(target)
        return FileResponse(index_file)


def _find_port(host: str, preferred: int, span: int = 20) -> int:
    for port in range(preferred, preferred + span + 1):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.bind((host, port))
            except OSError:
                continue
        return port
    return preferred


def _open_browser_when_ready(url: str, health_url: str, timeout_sec: int = 30) -> None:
    def _worker() -> None:
        deadline = time.time() + timeout_sec
        while time.time() < deadline:
            try:
                with urllib.request.urlopen(health_url, timeout=2):
                    break
            except OSError:
                time.sleep(0.4)
        webbrowser.open(url)

    threading.Thread(target=_worker, daemon=True).start()


def main() -> None:
    parser = argparse.ArgumentParser(description="Dragon Faith review desk launcher")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8020)
    parser.add_argument("--no-browser", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    frontend_dist = _resolve_frontend_dist()
    if frontend_dist is None:
        logger.warning("Frontend dist not found, only API endpoints will be available.")
    else:
        logger.info(f"Frontend dist: {frontend_dist}")
        _attach_frontend_routes(frontend_dist)

    port = _find_port(args.host, args.port)
    if port != args.port:
        logger.info(f"Port {args.port} is busy, fallback to {port}.")

    base_url = f"http://{args.host}:{port}"
    if not args.no_browser:
        _open_browser_when_ready(base_url, f"{base_url}/health")

    logger.info(f"Starting Dragon Faith on {base_url}")
    uvicorn.run(api_app, host=args.host, port=port, log_level="info")


if __name__ == "__main__":
    main()
