"""HTTP and WebSocket server for the web interface."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path
from typing import Any, Optional, Sequence

from aiohttp import WSMsgType, web

from laszoo.webstate import ApiResponse, GamepadStatus, WebUIState

UPDATE_INTERVAL = 5.0
DEFAULT_PORT = 8080
DEFAULT_MOUNT = "/mnt/laszoo"

_MESSAGE_FIELDS: dict[str, dict[str, type]] = {
    "Subscribe": {"channel": str},
    "Unsubscribe": {"channel": str},
    "Command": {"action": str, "data": object},
    "Update": {"channel": str, "data": object},
    "Notification": {"level": str, "message": str},
    "Error": {"message": str},
    "Pong": {},
}


def parse_ws_message(text: str) -> dict[str, Any]:
    """Parse a tagged WebSocket message; raises ValueError if it is malformed."""
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise ValueError("message must be a JSON object")
    kind = obj.get("type")
    fields = _MESSAGE_FIELDS.get(kind) if isinstance(kind, str) else None
    if fields is None:
        raise ValueError(f"unknown message type: {kind!r}")
    message: dict[str, Any] = {"type": kind}
    for name, expected in fields.items():
        if name not in obj:
            raise ValueError(f"missing field {name!r}")
        value = obj[name]
        if not isinstance(value, expected):
            raise ValueError(f"field {name!r} has the wrong type")
        message[name] = value
    return message


def _update(channel: str, data: Any) -> dict[str, Any]:
    return {"type": "Update", "channel": channel, "data": data}


def handle_command(state: WebUIState, action: str, data: Any) -> dict[str, Any]:
    """Return the reply message for a client command."""
    if action == "refresh_status":
        return _update("status", state.system_status.to_dict())
    if action == "refresh_files":
        return _update("files", [item.to_dict() for item in state.enrolled_files])
    if action == "refresh_groups":
        return _update("groups", [item.to_dict() for item in state.groups])
    return {"type": "Error", "message": f"Unknown command: {action}"}


@web.middleware
async def _cors(request: web.Request, handler) -> web.StreamResponse:
    if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
        response: web.StreamResponse = web.Response()
        response.headers["Access-Control-Allow-Methods"] = request.headers[
            "Access-Control-Request-Method"
        ]
        requested = request.headers.get("Access-Control-Request-Headers")
        if requested:
            response.headers["Access-Control-Allow-Headers"] = requested
    else:
        response = await handler(request)
    if not response.prepared:
        response.headers["Access-Control-Allow-Origin"] = "*"
    return response


def create_app(state: WebUIState, static_dir: str | os.PathLike = "static") -> web.Application:
    """Build the application serving the API, the WebSocket and static files."""
    static_path = Path(static_dir)

    async def get_status(request: web.Request) -> web.Response:
        status = state.system_status
        return web.json_response({
            "hostname": status.hostname,
            "mfs_mounted": status.mfs_mounted,
            "service_status": "running" if status.service_running else "stopped",
            "service_mode": "watch",
        })

    async def get_groups(request: web.Request) -> web.Response:
        return web.json_response({"groups": [group.to_dict() for group in state.groups]})

    async def get_group_details(request: web.Request) -> web.Response:
        name = request.match_info["name"]
        group = next((g for g in state.groups if g.name == name), None)
        if group is None:
            return web.json_response(
                ApiResponse.fail(f"Group '{name}' not found").to_dict(), status=404
            )
        return web.json_response(ApiResponse.ok(group).to_dict())

    async def get_enrolled_files(request: web.Request) -> web.Response:
        return web.json_response({"files": [item.to_dict() for item in state.enrolled_files]})

    async def get_operations(request: web.Request) -> web.Response:
        return web.json_response(ApiResponse.ok(state.active_operations).to_dict())

    async def gamepad_status(request: web.Request) -> web.Response:
        return web.json_response(ApiResponse.ok(GamepadStatus()).to_dict())

    async def index(request: web.Request) -> web.StreamResponse:
        page = static_path / "index.html"
        if not page.is_file():
            raise web.HTTPNotFound(text="index.html not found")
        return web.FileResponse(page)

    async def websocket(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(autoping=False)
        await ws.prepare(request)
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=100)

        async def send_loop() -> None:
            while True:
                message = await queue.get()
                try:
                    await ws.send_str(json.dumps(message))
                except (ConnectionError, RuntimeError):
                    return

        async def update_loop() -> None:
            while True:
                await queue.put(_update("status", state.system_status.to_dict()))
                await asyncio.sleep(UPDATE_INTERVAL)

        async def receive_loop() -> None:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        parsed = parse_ws_message(msg.data)
                    except ValueError:
                        await queue.put({"type": "Error", "message": "Invalid message format"})
                        continue
                    if parsed["type"] == "Subscribe":
                        await queue.put({
                            "type": "Notification",
                            "level": "info",
                            "message": f"Subscribed to {parsed['channel']}",
                        })
                    elif parsed["type"] == "Command":
                        await queue.put(handle_command(state, parsed["action"], parsed["data"]))
                elif msg.type == WSMsgType.PING:
                    await ws.pong(msg.data)
                    await queue.put({"type": "Pong"})
                elif msg.type in (WSMsgType.CLOSE, WSMsgType.ERROR):
                    break

        tasks = [asyncio.create_task(loop()) for loop in (send_loop, update_loop, receive_loop)]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        if not ws.closed:
            await ws.close()
        return ws

    app = web.Application(middlewares=[_cors])
    app.router.add_get("/api/status", get_status)
    app.router.add_get("/api/groups", get_groups)
    app.router.add_get("/api/groups/{name}", get_group_details)
    app.router.add_get("/api/files", get_enrolled_files)
    app.router.add_get("/api/operations", get_operations)
    app.router.add_get("/ws", websocket)
    app.router.add_get("/api/gamepad/status", gamepad_status)
    if static_path.is_dir():
        app.router.add_static("/static", static_path)
    app.router.add_get("/", index)
    return app


class WebUI:
    """The web interface for one shared mount."""

    def __init__(self, mfs_mount: str | os.PathLike) -> None:
        self.mfs_mount = Path(mfs_mount)
        self.state = WebUIState()
        self.static_dir: Path = Path("static")

    async def start(self, port: int = DEFAULT_PORT) -> None:
        """Serve on all interfaces until cancelled."""
        runner = web.AppRunner(create_app(self.state, self.static_dir))
        await runner.setup()
        addr = f"0.0.0.0:{port}"
        try:
            site = web.TCPSite(runner, "0.0.0.0", port)
            try:
                await site.start()
            except OSError as exc:
                raise OSError(exc.errno, f"Failed to bind to {addr}: {exc}") from exc
            print(f"Web UI starting on http://{addr}")
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="laszoo-webui", description="Laszoo web interface")
    parser.add_argument(
        "--mfs-mount",
        default=os.environ.get("LASZOO_MFS_MOUNT", DEFAULT_MOUNT),
        help="mount point of the shared filesystem",
    )
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="port to listen on")
    parser.add_argument("--static-dir", default="static", help="directory of static files")
    args = parser.parse_args(argv)

    webui = WebUI(args.mfs_mount)
    webui.static_dir = Path(args.static_dir)
    print(f"Starting Laszoo Web UI on http://localhost:{args.port}")
    try:
        asyncio.run(webui.start(args.port))
    except KeyboardInterrupt:
        pass
    return 0