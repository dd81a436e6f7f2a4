# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""WSGI server exposing the items of a share (threaded backend).

This module exposes a WebOb-based WSGI application hosted with
``oslo_service``. The application routes requests either into the single
shared item or, when several items are shared, through a virtual root that
lists every item by name. Directory access is confined by
:class:`~cfshare.fileserver.boundary.SecurityBoundary` and every response is
recorded in the access statistics and the access log.

The module is also the entry point of the detached server process, see
:func:`main`.
"""

import base64
import binascii
import hmac
import os
import posixpath
import stat
import sys
import threading
import time
from datetime import datetime, timezone
from socketserver import ThreadingMixIn
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from oslo_config import cfg
from oslo_log import log as logging
from oslo_service import service
from webob import Request, Response
from webob.static import FileApp

from .. import __version__
from ..config import CONF, ConfigPaths, default_config_files
from ..exceptions import CfshareError, ForbiddenError, RouteNotFoundError
from ..state import AccessRecord, Credentials, ShareItem
from ..stats import AccessStatsStore
from .boundary import SecurityBoundary
from .listing import DirectoryListing, listing_to_dict, render_html, scan_directory
from .namespace import VirtualNamespace
from .utils import append_access_log, content_disposition, decode_paths

LOG = logging.getLogger(__name__)

USERNAME_ENV = "CFSHARE_USERNAME"
PASSWORD_ENV = "CFSHARE_PASSWORD"
REALM = "cfshare"
ALLOWED_METHODS = ("GET", "HEAD")

server_cli_opts = [
    cfg.StrOpt(
        "paths",
        positional=True,
        required=True,
        help="Encoded list of the paths to share",
    ),
    cfg.PortOpt("port", help="Listen port, defaults to [share] port"),
]


def _error(status: int, detail: str) -> Response:
    """Return a JSON error response with the given HTTP status and detail."""
    return Response(json_body={"detail": detail}, status=status)


def _request_path(environ) -> Tuple[str, bool]:
    """Decode PATH_INFO once.

    Returns the printable path and whether it was valid UTF-8. Undecodable
    bytes are replaced so that the path can still be logged and recorded.
    """
    raw = environ.get("PATH_INFO", "").encode("latin-1", "replace")
    try:
        return raw.decode("utf-8"), True
    except UnicodeDecodeError:
        return raw.decode("utf-8", "replace"), False


def _segments(path: str) -> List[str]:
    """Lexically clean ``path`` and split it into segments.

    Raises ForbiddenError when the cleaned path climbs above the root.
    """
    relative = path.lstrip("/")
    clean = posixpath.normpath(relative) if relative else "."
    if clean == ".." or clean.startswith("../"):
        raise ForbiddenError(f"path escapes the share root: {path}")
    return [s for s in clean.split("/") if s not in ("", ".")]


def credentials_from_env(environ: Mapping[str, str]) -> Optional[Credentials]:
    """Return the Basic Auth pair handed over by the controller, if any."""
    username = environ.get(USERNAME_ENV)
    password = environ.get(PASSWORD_ENV)
    if username and password:
        return Credentials(username=username, password=password)
    return None


class ShareApplication:
    """WSGI application serving one share generation."""

    def __init__(
        self,
        namespace: VirtualNamespace,
        stats_store: Optional[AccessStatsStore] = None,
        credentials: Optional[Credentials] = None,
        access_log=None,
    ):
        self.namespace = namespace
        self.stats_store = stats_store
        self.credentials = credentials
        self.access_log = access_log
        self._boundaries: Mapping[str, SecurityBoundary] = MappingProxyType(
            {item.name: SecurityBoundary(item.path) for item in namespace.items if item.is_dir}
        )

    def __call__(self, environ, start_response):
        """WSGI application callable."""
        request = Request(environ)
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        path, valid = _request_path(environ)
        try:
            response = self._authorize(request) or self._dispatch(request, path, valid)
        except Exception as exc:
            LOG.exception("Request for %s failed: %s", path, exc)
            response = _error(500, "Internal Server Error")
        response.headers["Cache-Control"] = "no-store"
        self._record(request, response, path, started_at, started)
        return response(environ, start_response)

    def _authorize(self, request: Request) -> Optional[Response]:
        """Return a 401 response unless the request carries the share's credentials."""
        if self.credentials is None:
            return None
        scheme, _, value = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() == "basic":
            try:
                decoded = base64.b64decode(value.strip(), validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                decoded = ""
            username, sep, password = decoded.partition(":")
            if sep:
                user_ok = hmac.compare_digest(
                    username.encode("utf-8"), self.credentials.username.encode("utf-8")
                )
                pass_ok = hmac.compare_digest(
                    password.encode("utf-8"), self.credentials.password.encode("utf-8")
                )
                if user_ok and pass_ok:
                    return None
        response = Response(text="Unauthorized\n", status=401, content_type="text/plain")
        response.headers["WWW-Authenticate"] = f'Basic realm="{REALM}"'
        return response

    def _dispatch(self, request: Request, path: str, valid: bool) -> Response:
        if request.method not in ALLOWED_METHODS:
            response = _error(405, "Method not allowed")
            response.headers["Allow"] = ", ".join(ALLOWED_METHODS)
            return response
        try:
            if not valid:
                raise RouteNotFoundError(path)
            if self.namespace.multi:
                return self._route_multi(request, path)
            return self._route_single(request, path)
        except ForbiddenError as exc:
            LOG.warning("Forbidden request %s: %s", path, exc)
            return _error(403, "Forbidden")
        except RouteNotFoundError:
            return _error(404, "Not found")

    def _route_single(self, request: Request, path: str) -> Response:
        item = self.namespace.items[0]
        segments = _segments(path)
        if item.is_dir:
            return self._serve_in_directory(request, path, item, "/".join(segments), "")
        if segments and segments != [item.name]:
            raise RouteNotFoundError(path)
        return self._serve_file(request, item.path, item.name)

    def _route_multi(self, request: Request, path: str) -> Response:
        segments = _segments(path)
        if not segments:
            return self._listing_response(request, self.namespace.root_listing())
        name, rest = segments[0], segments[1:]
        item = self.namespace.lookup(name)
        if item is None:
            raise RouteNotFoundError(path)
        if not item.is_dir:
            if rest:
                raise RouteNotFoundError(path)
            return self._serve_file(request, item.path, item.name)
        return self._serve_in_directory(request, path, item, "/".join(rest), f"/{item.name}")

    def _serve_in_directory(
        self, request: Request, path: str, item: ShareItem, subpath: str, url_prefix: str
    ) -> Response:
        target = self._boundaries[item.name].resolve(subpath)
        try:
            st = os.stat(target)
        except (FileNotFoundError, NotADirectoryError):
            raise RouteNotFoundError(path)
        except PermissionError:
            raise ForbiddenError(f"permission denied: {path}")
        except OSError as exc:
            LOG.debug("Cannot stat %s: %s", target, exc)
            raise RouteNotFoundError(path)
        clean_sub = os.path.normpath(subpath) if subpath else ""
        if clean_sub == ".":
            clean_sub = ""
        if stat.S_ISDIR(st.st_mode):
            url_path = f"{url_prefix}/{clean_sub}" if clean_sub else f"{url_prefix}/"
            try:
                listing = scan_directory(target, url_path)
            except PermissionError:
                raise ForbiddenError(f"permission denied: {path}")
            return self._listing_response(request, listing)
        filename = os.path.basename(clean_sub) if clean_sub else item.name
        return self._serve_file(request, target, filename)

    def _serve_file(self, request: Request, path: str, filename: str) -> Response:
        response = request.get_response(FileApp(path))
        if response.status_int < 400:
            response.headers["Content-Disposition"] = content_disposition(filename)
        return response

    def _listing_response(self, request: Request, listing: DirectoryListing) -> Response:
        if request.GET.get("format") == "json":
            return Response(json_body=listing_to_dict(listing))
        return Response(text=render_html(listing), content_type="text/html", charset="UTF-8")

    def _record(
        self,
        request: Request,
        response: Response,
        path: str,
        started_at: datetime,
        started: float,
    ) -> None:
        bytes_sent = 0 if request.method == "HEAD" else (response.content_length or 0)
        remote_addr = request.remote_addr or ""
        if self.stats_store is not None:
            record = AccessRecord(
                time=started_at,
                path=path,
                status_code=response.status_int,
                bytes_sent=bytes_sent,
                remote_addr=remote_addr,
            )
            self.stats_store.record(record)
        if self.access_log is not None:
            append_access_log(
                self.access_log,
                {
                    "time": started_at.isoformat(),
                    "path": path,
                    "method": request.method,
                    "status": response.status_int,
                    "bytes": bytes_sent,
                    "remote_addr": remote_addr,
                    "user_agent": request.user_agent or "",
                    "duration_ms": int((time.monotonic() - started) * 1000),
                },
            )


class QuietWSGIRequestHandler(WSGIRequestHandler):
    """Request handler sending wsgiref's per-request lines to the debug log."""

    def log_message(self, format, *args):
        LOG.debug("%s - %s", self.address_string(), format % args)


class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """Threading-based WSGI server."""

    daemon_threads = True


class ThreadingWSGIService(service.ServiceBase):
    """Threading-based WSGI service."""

    def __init__(self, app, host: str, port: int):
        self._app = app
        self._host = host
        self._port = port
        self._httpd = None
        self._thread = None

    def bind(self):
        """Create the listening socket; raises OSError when the port is taken."""
        if self._httpd is None:
            self._httpd = make_server(
                self._host,
                self._port,
                self._app,
                server_class=ThreadingWSGIServer,
                handler_class=QuietWSGIRequestHandler,
            )

    @property
    def port(self) -> int:
        """Port actually bound, which differs from the requested one for 0."""
        if self._httpd is None:
            return self._port
        return self._httpd.server_port

    def start(self):
        """Start the WSGI service."""
        self.bind()
        self._thread = threading.Thread(
            target=self._httpd.serve_forever, name="fileserver", daemon=True
        )
        self._thread.start()

    def stop(self, graceful=True):
        """Stop the WSGI service."""
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()

    def wait(self):
        """Wait for the WSGI service to finish."""
        if self._thread is not None:
            self._thread.join()

    def reset(self, exiting=False):
        """Reset service state (no-op)."""
        return


def build_application(
    paths: List[str], config_paths: ConfigPaths, environ: Dict[str, str]
) -> ShareApplication:
    """Assemble the application of the detached server process."""
    namespace = VirtualNamespace.from_paths(paths)
    stats_store = AccessStatsStore(
        config_paths.stats,
        lock_retries=CONF.fileserver.stats_lock_retries,
        lock_interval=CONF.fileserver.stats_lock_interval,
        limit=CONF.fileserver.recent_access_limit,
    )
    return ShareApplication(
        namespace,
        stats_store=stats_store,
        credentials=credentials_from_env(environ),
        access_log=config_paths.access_log,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Run the file server until it receives SIGTERM or SIGINT.

    Started by the controller as ``python -m cfshare.fileserver <token>``;
    stdout and stderr already point at ``server.log``.
    """
    CONF.register_cli_opts(server_cli_opts)
    logging.register_options(CONF)
    CONF(
        sys.argv[1:] if argv is None else argv,
        project="cfshare",
        prog="cfshare-fileserver",
        version=__version__,
        default_config_files=default_config_files(),
    )
    logging.setup(CONF, "cfshare")

    try:
        paths = decode_paths(CONF.paths)
        app = build_application(paths, ConfigPaths(), dict(os.environ))
    except (ValueError, CfshareError) as exc:
        LOG.error("Cannot start file server: %s", exc)
        return 1

    host = CONF.fileserver.host
    port = CONF.port or CONF.share.port
    service_obj = ThreadingWSGIService(app, host, port)
    try:
        service_obj.bind()
    except OSError as exc:
        LOG.error("Cannot listen on %s:%d: %s", host, port, exc)
        return 1

    LOG.info(
        "Serving %d item(s) on %s:%d: %s",
        len(app.namespace),
        host,
        service_obj.port,
        ", ".join(item.path for item in app.namespace.items),
    )
    launcher = service.ServiceLauncher(CONF)
    launcher.launch_service(service_obj, workers=1)
    launcher.wait()
    return 0
