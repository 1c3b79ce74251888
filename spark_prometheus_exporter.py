import logging
import socket
import sys
from dataclasses import dataclass
from socketserver import ThreadingMixIn
from urllib.parse import urlparse
from wsgiref.simple_server import make_server, WSGIRequestHandler, WSGIServer

import fire
from prometheus_client import CollectorRegistry, Info, make_wsgi_app

from spark_apps_collector import SparkAppsCollector
from spark_apps_info import SparkApiClient
from spark_apps_scraper import SparkAppsScraper
from spark_exporter_errors import ConfigError

__version__ = "0.1.0"

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

LANDING_PAGE = """<html>
<head><title>Spark Exporter</title></head>
<body>
<h1>Spark Exporter</h1>
<p><a href='{metrics_path}'>Metrics</a></p>
</body>
</html>
"""

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExporterConfig:
  """Validated startup configuration."""

  host: str
  port: int
  metrics_path: str
  application_uri: str
  timeout: float

  @classmethod
  def from_args(cls, listen_address, metrics_path, application_uri, timeout):
    host, port = parse_listen_address(listen_address)
    return cls(host, port, parse_metrics_path(metrics_path),
               parse_application_uri(application_uri), parse_timeout(timeout))


def parse_listen_address(listen_address):
  host, sep, port = str(listen_address).rpartition(":")
  if not sep:
    raise ConfigError("Listen address {!r} must be [host]:port".format(listen_address))
  try:
    port = int(port)
  except ValueError:
    raise ConfigError("Invalid port in listen address {!r}".format(listen_address)) from None
  if not 0 <= port <= 65535:
    raise ConfigError("Port {} out of range".format(port))
  host = host.strip("[]") or "0.0.0.0"
  return host, port


def parse_metrics_path(metrics_path):
  metrics_path = str(metrics_path)
  if not metrics_path.startswith("/") or metrics_path == "/":
    raise ConfigError("Metrics path {!r} must start with / and not be /".format(metrics_path))
  return metrics_path


def parse_application_uri(uri):
  parsed = urlparse(str(uri))
  if parsed.scheme not in ("http", "https") or not parsed.hostname:
    raise ConfigError("Invalid Spark application URI {!r}".format(uri))
  return str(uri).rstrip("/")


def parse_timeout(timeout):
  try:
    timeout = float(timeout)
  except (TypeError, ValueError):
    raise ConfigError("Timeout must be a number of seconds, got {!r}".format(timeout)) from None
  if timeout <= 0:
    raise ConfigError("Timeout must be positive, got {}".format(timeout))
  return timeout


def make_exporter_app(registry, metrics_path):
  """WSGI app serving metrics on ``metrics_path`` and a landing page on /."""
  metrics_app = make_wsgi_app(registry)
  landing_page = LANDING_PAGE.format(metrics_path=metrics_path).encode("utf-8")

  def app(environ, start_response):
    path = environ.get("PATH_INFO", "/")
    if path == metrics_path:
      return metrics_app(environ, start_response)
    if path == "/":
      start_response("200 OK", [("Content-Type", "text/html; charset=utf-8")])
      return [landing_page]
    start_response("404 Not Found", [("Content-Type", "text/plain")])
    return [b"Not Found"]

  return app


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
  daemon_threads = True


class _ThreadingWSGIServerV6(_ThreadingWSGIServer):
  address_family = socket.AF_INET6


def server_class_for(host):
  """IPv6 literals need an AF_INET6 socket; names and IPv4 use AF_INET."""
  return _ThreadingWSGIServerV6 if ":" in host else _ThreadingWSGIServer


class _LoggingHandler(WSGIRequestHandler):
  def log_message(self, format, *args):
    logger.debug("%s - %s", self.address_string(), format % args)


def build_registry(config):
  registry = CollectorRegistry()
  client = SparkApiClient(config.application_uri, config.timeout)
  registry.register(SparkAppsCollector(SparkAppsScraper(client)))
  Info("spark_exporter_build", "Spark exporter build information",
       registry=registry).info({"version": __version__})
  return registry


class SparkExporter(object):
  def __init__(self, listen_address=":9110", metrics_path="/metrics"):
    self.listen_address = listen_address
    self.metrics_path = metrics_path
    self.server = None

  def run(self, application_uri="http://localhost:4040", timeout=5, log_level="INFO"):
    logging.basicConfig(level=str(log_level).upper(), format=LOG_FORMAT)
    try:
      config = ExporterConfig.from_args(self.listen_address, self.metrics_path,
                                        application_uri, timeout)
      self.server = self.start(config)
    except ConfigError as e:
      logger.critical("FATAL: %s", e)
      sys.exit(1)

    try:
      self.server.serve_forever()
    except KeyboardInterrupt:
      pass

    self.shutdown()

  def start(self, config):
    logger.info("Starting spark_exporter %s", __version__)
    app = make_exporter_app(build_registry(config), config.metrics_path)
    try:
      server = make_server(config.host, config.port, app,
                           server_class=server_class_for(config.host),
                           handler_class=_LoggingHandler)
    except OSError as e:
      raise ConfigError("Cannot listen on {}:{}: {}".format(config.host, config.port, e)) from e
    logger.info("Listening on %s:%s, scraping %s", config.host, server.server_port,
                config.application_uri)
    return server

  def shutdown(self):
    if self.server is not None:
      self.server.server_close()
    sys.exit(0)


def main():
  fire.Fire(SparkExporter)


if __name__ == '__main__':
  main()
