"""HTTP status and download page served next to the WebSocket listener."""

import asyncio
import contextlib
import html
import socket
from typing import Any, Callable, Dict, Optional

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import FileResponse, HTMLResponse

from common.exceptions import ListenerBindError
from common.logging_config import get_logger
from common.types import TransferSession
from common.utils import format_file_size

logger = get_logger(__name__)

PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>ZapShare - {title}</title>
  <style>
    body {{ font-family: -apple-system, "Segoe UI", Roboto, Helvetica, Arial, sans-serif;
           background: #f8f9fa; color: #212529; }}
    .card {{ max-width: 600px; margin: 40px auto; background: white; border-radius: 12px;
            box-shadow: 0 6px 18px rgba(0,0,0,0.1); padding: 30px; text-align: center; }}
    .file-info {{ background: #f5f5f5; padding: 15px; border-radius: 8px; margin: 20px 0; text-align: left; }}
    .button {{ background: #3056D3; color: white; padding: 14px 30px; border-radius: 6px;
              text-decoration: none; border: none; font-size: 16px; cursor: pointer; }}
    input[type="password"] {{ width: 100%; padding: 14px; border: 1px solid #ddd; border-radius: 6px; }}
    code {{ background: #eef; padding: 2px 6px; border-radius: 4px; }}
  </style>
</head>
<body><div class="card">{body}</div></body>
</html>"""


def _file_info(session: TransferSession) -> str:
    return (
        f'<div class="file-info"><h3>{html.escape(session.file_name)}</h3>'
        f'<p>Size: {format_file_size(session.file_size)}</p></div>'
    )


def render_password_page(session: TransferSession) -> str:
    body = (
        "<h1>Password Protected File</h1>"
        f"{_file_info(session)}"
        "<p>This file is password protected. Please enter the password to continue.</p>"
        '<form method="get" action="/">'
        '<p><input type="password" name="password" placeholder="Enter password" required></p>'
        '<button type="submit" class="button">Unlock File</button>'
        "</form>"
    )
    return PAGE.format(title="Password Required", body=body)


def render_download_page(session: TransferSession, password: Optional[str]) -> str:
    query = f"?password={html.escape(password, quote=True)}" if session.requires_password and password else ""
    body = (
        "<h1>Ready to Download</h1>"
        f"{_file_info(session)}"
        f'<a class="button" href="/download{query}">Download File</a>'
    )
    return PAGE.format(title=f"Download {html.escape(session.file_name)}", body=body)


def render_status_page(session: TransferSession, info: Dict[str, Any]) -> str:
    rows = []
    for url in info.get('local_urls', []):
        rows.append(f"<p>Local network: <code>{html.escape(url)}</code></p>")
    if info.get('public_url'):
        rows.append(f"<p>Global link: <code>{html.escape(info['public_url'])}</code></p>")
    if info.get('receive_command'):
        rows.append(f"<p>Command line: <code>{html.escape(info['receive_command'])}</code></p>")
    rows.append(f"<p>Active connections: {info.get('connections', 0)}</p>")
    rows.append(f"<p>Transfers completed: {session.transfers_completed}</p>")
    rows.append(f"<p>Sharing ends at: {session.expires_at.strftime('%Y-%m-%d %H:%M:%S UTC')}</p>")
    body = f"<h1>Sharing {html.escape(session.file_name)}</h1>{_file_info(session)}{''.join(rows)}"
    return PAGE.format(title=f"Sharing {html.escape(session.file_name)}", body=body)


ACCESS_DENIED_PAGE = PAGE.format(
    title="Access Denied",
    body='<h1>Access Denied</h1><p>Invalid password. Please go back and enter the correct password.</p>'
         '<p><a href="/">Go back</a></p>',
)


def create_status_app(
    session: TransferSession,
    info_provider: Optional[Callable[[], Dict[str, Any]]] = None
) -> FastAPI:
    """
    Build the status/download application for one session.

    Args:
        session: Session being shared
        info_provider: Returns connection details (local_urls, public_url, receive_command, connections)

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="ZapShare",
        description="File sharing status and download page",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    def share_info() -> Dict[str, Any]:
        return info_provider() if info_provider else {}

    @app.get("/", response_class=HTMLResponse)
    async def index(password: Optional[str] = Query(None)):
        """Download page, or the password form when the password is missing or wrong."""
        if session.requires_password and not session.check_password(password):
            return HTMLResponse(render_password_page(session))
        return HTMLResponse(render_download_page(session, password))

    @app.get("/status", response_class=HTMLResponse)
    async def status_page():
        return HTMLResponse(render_status_page(session, share_info()))

    @app.get("/status.json")
    async def status_json():
        info = share_info()
        return {
            'file_name': session.file_name,
            'file_size': session.file_size,
            'password_protected': session.requires_password,
            'connections': info.get('connections', 0),
            'transfers_completed': session.transfers_completed,
            'expires_at': session.expires_at.isoformat(),
            'public_url': info.get('public_url'),
        }

    @app.get("/ping")
    async def ping():
        return {'status': 'ok'}

    @app.get("/download")
    async def download(password: Optional[str] = Query(None)):
        """
        Stream the shared file.

        Raises:
            - 403: Wrong or missing password on a protected session
        """
        if session.requires_password and not session.check_password(password):
            return HTMLResponse(ACCESS_DENIED_PAGE, status_code=403)
        logger.info(f"HTTP download of {session.file_name} started")
        return FileResponse(
            session.file_path,
            filename=session.file_name,
            media_type='application/octet-stream',
        )

    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the owning event loop."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class StatusServer:
    """
    Runs a status application with uvicorn inside the current event loop.
    """

    def __init__(self, app: FastAPI, host: str, port: int):
        self.app = app
        self.host = host
        self.port = port
        self._server: Optional[_EmbeddedServer] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """
        Bind the port and start serving.

        Raises:
            ListenerBindError: If the port cannot be bound
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            raise ListenerBindError(f"Cannot bind status page on {self.host}:{self.port}: {e}")
        sock.set_inheritable(True)

        config = uvicorn.Config(
            self.app,
            log_level='warning',
            access_log=False,
            lifespan='off',
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                error = self._task.exception()
                raise ListenerBindError(f"Status page failed to start: {error}")
            await asyncio.sleep(0.05)
        logger.info(f"Status page started on http://{self.host}:{self.port}")

    async def stop(self, timeout: float = 2.0) -> None:
        """Stop serving. Safe to call more than once."""
        if self._server is None or self._task is None:
            return
        self._server.should_exit = True
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            self._server.force_exit = True
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._server = None
        self._task = None
        logger.info(f"Status page on port {self.port} stopped")
