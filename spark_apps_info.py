import logging
import socket
from contextlib import contextmanager
from time import monotonic

import requests
from urllib3.exceptions import ReadTimeoutError

from spark_exporter_errors import ErrorKind, FetchError

logger = logging.getLogger(__name__)


class SparkApiClient(object):
    """Spark application REST API client.

    Every fetch runs against a deadline on the monotonic clock. Callers making
    several requests for one scrape pass the same deadline to each of them;
    without one, a fetch gets ``timeout`` seconds from the moment it starts.
    """

    spark_api_url = "api/v1/applications"

    def __init__(self, base_uri, timeout, chunk_size=8192):
        self._base_uri = base_uri.rstrip("/")
        self._timeout = timeout
        self._chunk_size = chunk_size

    @property
    def base_uri(self):
        return self._base_uri

    @property
    def timeout(self):
        return self._timeout

    def new_deadline(self):
        return monotonic() + self._timeout

    @staticmethod
    def create_uri(base_uri, url):
        """Create request uri."""

        return "%s/%s" % (base_uri, url)

    @contextmanager
    def fetch(self, url, deadline=None):
        """Make one GET request and yield the response body as byte chunks.

        The response is closed when the block exits, whether the body was
        drained or not.
        """
        if deadline is None:
            deadline = self.new_deadline()
        uri = self.create_uri(self._base_uri, url)
        remaining = _remaining(uri, deadline)
        logger.debug("Requesting %s (%.3fs left)", uri, remaining)
        try:
            response = requests.get(uri, timeout=min(self._timeout, remaining), stream=True)
        except requests.exceptions.RequestException as req_err:
            raise _fetch_error(uri, req_err) from req_err

        try:
            if not 200 <= response.status_code < 300:
                raise FetchError(ErrorKind.BAD_STATUS, uri,
                                 "Unexpected HTTP status {}".format(response.status_code),
                                 status_code=response.status_code)
            yield self._iter_body(uri, response, deadline)
        finally:
            response.close()

    def _iter_body(self, uri, response, deadline):
        try:
            for chunk in response.iter_content(chunk_size=self._chunk_size):
                _remaining(uri, deadline)
                yield chunk
        except requests.exceptions.RequestException as req_err:
            raise _fetch_error(uri, req_err) from req_err

    def fetch_applications(self, deadline=None):
        """Get info for all applications known to the Spark UI."""
        return self.fetch(self.spark_api_url, deadline)

    def fetch_executors(self, app_id, deadline=None):
        """Get executor details for app."""
        return self.fetch(self.spark_api_url + "/{}/executors".format(app_id), deadline)


def _remaining(uri, deadline):
    remaining = deadline - monotonic()
    if remaining <= 0:
        raise FetchError(ErrorKind.TIMEOUT, uri, "Scrape deadline exceeded")
    return remaining


def _is_timeout(req_err):
    # ConnectTimeout is both a Timeout and a ConnectionError; Timeout wins.
    if isinstance(req_err, requests.exceptions.Timeout):
        return True
    # A read timeout while streaming the body surfaces as a ConnectionError.
    wrapped = req_err.args[0] if req_err.args else None
    if isinstance(wrapped, (ReadTimeoutError, socket.timeout)):
        return True
    return isinstance(req_err.__context__, (ReadTimeoutError, socket.timeout))


def _fetch_error(uri, req_err):
    if _is_timeout(req_err):
        return FetchError(ErrorKind.TIMEOUT, uri, "Request timed out: {}".format(req_err))
    return FetchError(ErrorKind.UNREACHABLE, uri, "Request failed: {}".format(req_err))
