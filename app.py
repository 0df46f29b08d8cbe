"""
Flask Request Sink Application
Main entry point for the request sink service.
"""
import sys
from typing import Optional, Sequence

from flask import Flask, Response, request
from werkzeug.exceptions import MethodNotAllowed
from werkzeug.routing import Rule
from werkzeug.serving import make_server

from config import Config, ConfigError
from metrics import create_metrics
from request_handler import RequestHandler


METRICS_PATH = '/metrics'
METRICS_METHODS = ['GET', 'HEAD']


def create_app(config: Config, metrics=None) -> Flask:
    """
    Create the Flask application.

    Args:
        config: The configuration object
        metrics: Registry to record into (default: a fresh one per config)

    Returns:
        Flask app routing /metrics to the exposition (when enabled) and everything else to the handler
    """
    if metrics is None:
        metrics = create_metrics(config.is_metrics_enabled())

    app = Flask(__name__, static_folder=None)
    app.url_map.merge_slashes = False
    app.extensions['argus.metrics'] = metrics

    handler = RequestHandler(config, metrics)

    def sink(path):
        """Handle any method on any path."""
        return handler.handle(request)

    def metrics_endpoint():
        """Serve the current counters."""
        if request.method not in METRICS_METHODS:
            raise MethodNotAllowed(valid_methods=METRICS_METHODS)
        return Response(metrics.export(), status=200, content_type='text/plain')

    # Rules added without a method list match every method, including extension methods
    app.url_map.add(Rule('/', defaults={'path': ''}, endpoint='sink'))
    app.url_map.add(Rule('/<path:path>', endpoint='sink'))
    app.view_functions['sink'] = sink

    if config.is_metrics_enabled():
        # Claims every method so that /metrics never falls through to the sink
        app.url_map.add(Rule(METRICS_PATH, endpoint='metrics'))
        app.view_functions['metrics'] = metrics_endpoint

    return app


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Parse the configuration, bind and serve until the process is terminated."""
    try:
        config = Config(argv)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    app = create_app(config)

    address = f'{config.get_listen_address()}:{config.get_port()}'
    print(f"Listening on {address}", file=sys.stderr)
    if config.is_metrics_enabled():
        print(f"Metrics are enabled and accessible at {METRICS_PATH}", file=sys.stderr)
    else:
        print("Metrics are disabled", file=sys.stderr)

    # Werkzeug reports bind failures itself and exits with status 1
    server = make_server(config.get_listen_address(), config.get_port(), app, threaded=True)
    server.serve_forever()
    return 0


if __name__ == '__main__':
    sys.exit(main())
