import pytest
import requests
from mock import MagicMock, patch
from urllib3.exceptions import ReadTimeoutError

from spark_apps_info import SparkApiClient
from spark_exporter_errors import ErrorKind, FetchError


def make_response(status_code=200, chunks=(b"[]",)):
    response = MagicMock()
    response.status_code = status_code
    response.iter_content.return_value = iter(chunks)
    return response


def test_fetch_applications_uri_and_timeout():
    client = SparkApiClient("http://localhost:4040/", 2.5)
    response = make_response(chunks=(b'[{"id": ', b'"app-1"}]'))
    with patch("spark_apps_info.monotonic", return_value=50.0), \
            patch("spark_apps_info.requests.get", return_value=response) as get:
        with client.fetch_applications() as body:
            assert b"".join(body) == b'[{"id": "app-1"}]'

    get.assert_called_once_with("http://localhost:4040/api/v1/applications",
                                timeout=2.5, stream=True)
    response.close.assert_called_once_with()


def test_fetch_executors_uri():
    client = SparkApiClient("http://localhost:4040", 5)
    with patch("spark_apps_info.requests.get", return_value=make_response()) as get:
        with client.fetch_executors("app-1") as body:
            list(body)
    assert get.call_args[0][0] == "http://localhost:4040/api/v1/applications/app-1/executors"


def test_base_uri_and_timeout_are_read_only():
    client = SparkApiClient("http://localhost:4040", 5)
    assert client.base_uri == "http://localhost:4040"
    assert client.timeout == 5
    with pytest.raises(AttributeError):
        client.timeout = 10


@pytest.mark.parametrize("exc, kind", [
    (requests.exceptions.ReadTimeout("slow"), ErrorKind.TIMEOUT),
    (requests.exceptions.ConnectTimeout("slow connect"), ErrorKind.TIMEOUT),
    (requests.exceptions.ConnectionError("refused"), ErrorKind.UNREACHABLE),
    (requests.exceptions.InvalidURL("bad"), ErrorKind.UNREACHABLE),
])
def test_request_errors_are_mapped(exc, kind):
    client = SparkApiClient("http://localhost:4040", 5)
    with patch("spark_apps_info.requests.get", side_effect=exc):
        with pytest.raises(FetchError) as excinfo:
            with client.fetch_applications():
                pass
    assert excinfo.value.kind == kind
    assert excinfo.value.uri == "http://localhost:4040/api/v1/applications"


@pytest.mark.parametrize("status_code", [301, 404, 500, 503])
def test_unsuccessful_status(status_code):
    client = SparkApiClient("http://localhost:4040", 5)
    response = make_response(status_code=status_code)
    with patch("spark_apps_info.requests.get", return_value=response):
        with pytest.raises(FetchError) as excinfo:
            with client.fetch_applications():
                pass
    assert excinfo.value.kind == ErrorKind.BAD_STATUS
    assert excinfo.value.status_code == status_code
    response.close.assert_called_once_with()
    response.iter_content.assert_not_called()


def test_error_while_streaming_body_is_mapped():
    client = SparkApiClient("http://localhost:4040", 5)

    def broken_body(chunk_size):
        yield b"[{"
        raise requests.exceptions.ChunkedEncodingError("connection reset")

    response = make_response()
    response.iter_content.side_effect = broken_body
    with patch("spark_apps_info.requests.get", return_value=response):
        with pytest.raises(FetchError) as excinfo:
            with client.fetch_applications() as body:
                b"".join(body)
    assert excinfo.value.kind == ErrorKind.UNREACHABLE
    response.close.assert_called_once_with()


def test_response_closed_when_consumer_fails():
    client = SparkApiClient("http://localhost:4040", 5)
    response = make_response()
    with patch("spark_apps_info.requests.get", return_value=response):
        with pytest.raises(RuntimeError):
            with client.fetch_applications():
                raise RuntimeError("decode blew up")
    response.close.assert_called_once_with()


def test_read_timeout_while_streaming_is_a_timeout():
    client = SparkApiClient("http://localhost:4040", 0.5)

    def stalled_body(chunk_size):
        yield b"["
        raise requests.exceptions.ConnectionError(
            ReadTimeoutError(None, "/api/v1/applications", "Read timed out."))

    response = make_response()
    response.iter_content.side_effect = stalled_body
    with patch("spark_apps_info.requests.get", return_value=response):
        with pytest.raises(FetchError) as excinfo:
            with client.fetch_applications() as body:
                b"".join(body)
    assert excinfo.value.kind == ErrorKind.TIMEOUT
    response.close.assert_called_once_with()


def test_trickling_body_hits_the_deadline():
    client = SparkApiClient("http://localhost:4040", 0.5)
    clock = [10.0]

    def trickle(chunk_size):
        for byte in b'[{"id": "app-1"}]':
            clock[0] += 0.4
            yield bytes([byte])

    response = make_response()
    response.iter_content.side_effect = trickle
    received = []
    with patch("spark_apps_info.monotonic", side_effect=lambda: clock[0]), \
            patch("spark_apps_info.requests.get", return_value=response):
        with pytest.raises(FetchError) as excinfo:
            with client.fetch_applications() as body:
                for chunk in body:
                    received.append(chunk)
    assert excinfo.value.kind == ErrorKind.TIMEOUT
    assert received == [b"["]
    response.close.assert_called_once_with()


def test_request_timeout_is_capped_by_deadline():
    client = SparkApiClient("http://localhost:4040", 5)
    with patch("spark_apps_info.monotonic", return_value=100.0), \
            patch("spark_apps_info.requests.get", return_value=make_response()) as get:
        with client.fetch_executors("app-1", deadline=101.5) as body:
            list(body)
    assert get.call_args[1]["timeout"] == 1.5


def test_expired_deadline_skips_request():
    client = SparkApiClient("http://localhost:4040", 5)
    with patch("spark_apps_info.monotonic", return_value=100.0), \
            patch("spark_apps_info.requests.get") as get:
        with pytest.raises(FetchError) as excinfo:
            with client.fetch_executors("app-1", deadline=99.0):
                pass
    assert excinfo.value.kind == ErrorKind.TIMEOUT
    get.assert_not_called()
