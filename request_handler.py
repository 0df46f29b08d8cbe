"""
Request Handler module.
Decides whether a request is logged and builds the canned response.
"""
import json
import sys
from datetime import datetime, timezone
from typing import Optional, TextIO
from urllib.parse import urlsplit

from flask import Request, Response

from config import Config


FILE_READ_ERROR_BODY = 'Error reading file'
DEFAULT_BODY = json.dumps({'status': 'ok'}, separators=(',', ':')) + '\n'


def request_uri(request: Request) -> str:
    """
    Return the request target exactly as received, path and query undecoded.
    Falls back to the decoded path when the server did not record the raw target.
    """
    uri = request.environ.get('REQUEST_URI') or request.environ.get('RAW_URI') or request.path
    if request.query_string and '?' not in uri:
        uri += '?' + request.query_string.decode('latin-1')
    return uri


def request_target_path(uri: str) -> str:
    """Path component of a raw request target, still percent-encoded."""
    if not uri.startswith('/'):
        # absolute-form target, as sent to forward proxies
        return urlsplit(uri).path or '/'
    return uri.split('?', 1)[0]


def render_headers(headers) -> str:
    """
    Render request headers for the log record.
    Names are lower-cased and kept in arrival order, e.g. {"host": "localhost", "accept": "*/*"}
    """
    items = [f'{json.dumps(name.lower())}: {json.dumps(value)}' for name, value in headers]
    return '{' + ', '.join(items) + '}'


class RequestHandler:
    """Handles every request that is not a metrics scrape."""

    def __init__(self, config: Config, metrics, stream: Optional[TextIO] = None):
        """
        Initialize the request handler.

        Args:
            config: The configuration object
            metrics: A MetricsRegistry or NullMetrics
            stream: Where request log lines go (default: sys.stdout at write time)
        """
        self.config = config
        self.metrics = metrics
        self.stream = stream

    def handle(self, request: Request) -> Response:
        """
        Log the request if it passes the filter and return the canned response.

        Args:
            request: The incoming Flask request

        Returns:
            Flask Response with the configured status, headers and body
        """
        self.metrics.record_request(request.method)

        # Invalid UTF-8 is replaced, never rejected
        body = request.get_data().decode('utf-8', errors='replace')

        uri = request_uri(request)
        if self.should_log(request_target_path(uri), request.method):
            self._emit_log(request, uri, body)

        status = self.config.get_response_status()
        response = Response(self._response_body(), status=status, mimetype='text/plain')

        if self.config.response_headers:
            for key, value in self.config.response_headers.items():
                response.headers[key] = value

        self.metrics.record_response(status)

        return response

    def should_log(self, path: str, method: str) -> bool:
        """
        Evaluate the log filter.
        When both route and method filters are configured, both must match.
        """
        routes = self.config.filter_routes
        methods = self.config.filter_methods

        route_match = routes is None or any(path.startswith(route) for route in routes)
        method_match = methods is None or method in methods

        return route_match and method_match

    def _response_body(self) -> str:
        """
        Determine the response body.
        Precedence: body file (read per request), configured body, default JSON.
        """
        if self.config.response_body_file:
            try:
                with open(self.config.response_body_file, encoding='utf-8') as f:
                    return f.read()
            except (OSError, UnicodeDecodeError):
                return FILE_READ_ERROR_BODY
        if self.config.response_body is not None:
            return self.config.response_body + '\n'
        return DEFAULT_BODY

    def _emit_log(self, request: Request, uri: str, body: str):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'method': request.method,
            'uri': uri,
            'headers': render_headers(request.headers),
            'body': body,
        }

        stream = self.stream or sys.stdout
        try:
            # Single write per record so concurrent lines never interleave
            stream.write(json.dumps(log_entry) + '\n')
            stream.flush()
        except (OSError, ValueError):
            pass
