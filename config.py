"""
Configuration module for the request sink.
Handles command-line and environment variable parsing and validation.
"""
import argparse
import ipaddress
import os
import re
from typing import Dict, List, Mapping, Optional, Sequence, Set


__version__ = '0.1.0'

DEFAULT_LISTEN_ADDRESS = '0.0.0.0'
DEFAULT_PORT = '8080'
DEFAULT_STATUS = 200

# RFC 9110 token characters, used for method and header names
TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
# Header values may carry visible characters, SP, HTAB and obs-text
HEADER_VALUE_RE = re.compile(r'^[\t\x20-\x7e\x80-\xff]*$')

FALSEY_VALUES = {'', '0', 'false', 'f', 'no', 'n', 'off'}
# Plain unsigned decimal, no sign, whitespace or underscores
UINT_RE = re.compile(r'[0-9]+')


class ConfigError(ValueError):
    """Raised when a startup option is malformed."""


def parse_headers(raw: str) -> Dict[str, str]:
    """
    Parse response headers.
    Format: <key>:<value>,<key>:<value>,...

    Each pair is split on the first colon and both sides are trimmed.

    Raises:
        ConfigError: If a pair has no colon
    """
    headers = {}
    for pair in raw.split(','):
        if ':' not in pair:
            raise ConfigError(f"Invalid header format: {pair}")
        key, value = pair.split(':', 1)
        headers[key.strip()] = value.strip()
    return headers


def parse_methods(raw: str) -> Set[str]:
    """
    Parse a comma-separated list of HTTP methods into upper-case tokens.

    Raises:
        ConfigError: If any entry is not a valid method token
    """
    methods = set()
    for token in raw.split(','):
        token = token.strip()
        if not TOKEN_RE.match(token):
            raise ConfigError(f"Invalid HTTP method: {token}")
        methods.add(token.upper())
    return methods


def parse_status(raw: str) -> int:
    """
    Parse an HTTP status code.

    The value must be an unsigned 16-bit integer within 100-599.
    """
    if not UINT_RE.fullmatch(raw):
        raise ConfigError(f"Invalid status code: {raw}")
    code = int(raw)
    if not 100 <= code <= 599:
        raise ConfigError(f"Invalid status code: {raw}")
    return code


def parse_routes(raw: str) -> List[str]:
    """Parse a comma-separated list of path prefixes."""
    return [route.strip() for route in raw.split(',') if route.strip()]


def parse_port(raw: str) -> int:
    if not UINT_RE.fullmatch(raw):
        raise ConfigError(f"Invalid port: {raw}")
    port = int(raw)
    if port > 65535:
        raise ConfigError(f"Invalid port: {raw}")
    return port


def parse_listen_address(raw: str) -> str:
    """Validate the listen address. Only literal IPv4/IPv6 addresses are accepted."""
    try:
        return str(ipaddress.ip_address(raw.strip()))
    except ValueError:
        raise ConfigError(f"Invalid listen address: {raw}")


def parse_bool(raw: str) -> bool:
    return raw.strip().lower() not in FALSEY_VALUES


class _DisableMetricsAction(argparse.Action):
    """Flag that also accepts an explicit value from the environment."""

    def __init__(self, option_strings, dest, **kwargs):
        super().__init__(option_strings, dest, nargs=0, **kwargs)

    def __call__(self, parser, namespace, values, option_string=None):
        setattr(namespace, self.dest, 'true')


class Config:
    """Immutable startup configuration, built from flags and environment variables."""

    def __init__(self, argv: Optional[Sequence[str]] = None,
                 environ: Optional[Mapping[str, str]] = None):
        """
        Parse and validate the configuration.

        Args:
            argv: Command-line arguments (default: sys.argv[1:])
            environ: Environment variables (default: os.environ)

        Raises:
            ConfigError: If any option is invalid
        """
        if environ is None:
            environ = os.environ
        args = self._build_parser(environ).parse_args(argv)

        self.listen_address = parse_listen_address(args.listen_addr)
        self.port = parse_port(args.port)
        self.response_headers = self._optional(args.response_headers, parse_headers)
        self.response_body = args.response_body
        self.response_body_file = args.response_body_file or None
        self.filter_routes = self._optional(args.filter_routes, parse_routes)
        self.filter_methods = self._optional(args.filter_methods, parse_methods)
        self.response_status = self._optional(args.response_status, parse_status)
        self.metrics_enabled = not parse_bool(args.disable_metrics)

        if self.response_headers:
            self._validate_headers(self.response_headers)

        self._frozen = True

    def __setattr__(self, name, value):
        if getattr(self, '_frozen', False):
            raise AttributeError(f"Config is read-only, cannot set '{name}'")
        super().__setattr__(name, value)

    @staticmethod
    def _build_parser(environ: Mapping[str, str]) -> argparse.ArgumentParser:
        """Build the argument parser, defaulting every option to its ARGUS_* variable."""
        parser = argparse.ArgumentParser(
            prog='argus',
            description='HTTP request sink returning a configurable canned response',
        )
        parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
        parser.add_argument('--listen-addr', default=environ.get('ARGUS_IP', DEFAULT_LISTEN_ADDRESS),
                            help='Address to listen on [env: ARGUS_IP]')
        parser.add_argument('--port', default=environ.get('ARGUS_PORT', DEFAULT_PORT),
                            help='Port to listen on [env: ARGUS_PORT]')
        parser.add_argument('--response-headers', default=environ.get('ARGUS_RESPONSE_HEADERS'),
                            help='Response headers as key:value,key:value [env: ARGUS_RESPONSE_HEADERS]')
        parser.add_argument('--response-body', default=environ.get('ARGUS_RESPONSE_BODY'),
                            help='Response body [env: ARGUS_RESPONSE_BODY]')
        parser.add_argument('--response-body-file', default=environ.get('ARGUS_RESPONSE_BODY_FILE'),
                            help='File to read the response body from [env: ARGUS_RESPONSE_BODY_FILE]')
        parser.add_argument('--filter-routes', default=environ.get('ARGUS_FILTER_ROUTES'),
                            help='Only log requests under these path prefixes [env: ARGUS_FILTER_ROUTES]')
        parser.add_argument('--filter-methods', default=environ.get('ARGUS_FILTER_METHODS'),
                            help='Only log requests with these methods [env: ARGUS_FILTER_METHODS]')
        parser.add_argument('--response-status', default=environ.get('ARGUS_RESPONSE_STATUS'),
                            help='Response status code [env: ARGUS_RESPONSE_STATUS]')
        parser.add_argument('--disable-metrics', action=_DisableMetricsAction,
                            default=environ.get('ARGUS_DISABLE_METRICS', ''),
                            help='Disable the /metrics endpoint [env: ARGUS_DISABLE_METRICS]')
        return parser

    @staticmethod
    def _optional(raw: Optional[str], parse):
        if raw is None:
            return None
        return parse(raw)

    @staticmethod
    def _validate_headers(headers: Dict[str, str]) -> None:
        """
        Validate header names and values against HTTP syntax.

        Raises:
            ConfigError: If a name is not a token or a value has control characters
        """
        for name, value in headers.items():
            if not TOKEN_RE.match(name):
                raise ConfigError(f"Invalid header name: {name!r}")
            if not HEADER_VALUE_RE.match(value):
                raise ConfigError(f"Invalid header value for {name}: {value!r}")

    def get_listen_address(self) -> str:
        """Get the listen address."""
        return self.listen_address

    def get_port(self) -> int:
        """Get the listen port."""
        return self.port

    def get_response_status(self) -> int:
        """Get the configured response status, or 200 when none is set."""
        if self.response_status is None:
            return DEFAULT_STATUS
        return self.response_status

    def is_metrics_enabled(self) -> bool:
        """Return whether the metrics registry and /metrics endpoint are active."""
        return self.metrics_enabled

    def __repr__(self):
        return (f'Config({self.listen_address}:{self.port}, status={self.get_response_status()}, '
                f'metrics={self.metrics_enabled})')
