import urllib.error
import urllib.request
from http import HTTPStatus

import pytest

from mesg.auxiliary import AuxiliaryServer
from mesg.metrics import MetricsWriter
from mesg.protocol import PROTOFILE


def test_respond_proto():
    response = AuxiliaryServer(0).respond("/proto")
    assert response.status == HTTPStatus.OK
    assert response.body == PROTOFILE
    assert response.content_type == "application/protobuf"


def test_respond_metrics_matches_writer():
    metrics = MetricsWriter()
    metrics.inc_push("orders")
    response = AuxiliaryServer(0, metrics).respond("/metrics")
    assert response.status == HTTPStatus.OK
    assert response.body.decode("utf-8") == metrics.write()
    assert response.content_type == "text/plain; charset=UTF-8"


def test_respond_unknown_path_is_not_found():
    response = AuxiliaryServer(0).respond("/nothing")
    assert response.status == HTTPStatus.NOT_FOUND
    assert response.body == b""


@pytest.fixture
def running():
    metrics = MetricsWriter()
    server = AuxiliaryServer(0, metrics, host="127.0.0.1")
    server.start()
    try:
        yield server, metrics
    finally:
        server.stop()


def test_http_serves_proto(running):
    server, _ = running
    with urllib.request.urlopen(f"http://127.0.0.1:{server.port}/proto", timeout=5) as reply:
        assert reply.status == HTTPStatus.OK
        assert reply.headers["Content-Type"] == "application/protobuf"
        assert reply.read() == PROTOFILE


def test_http_metrics_ignores_query(running):
    server, metrics = running
    metrics.inc_commit("orders")
    url = f"http://127.0.0.1:{server.port}/metrics?format=text"
    with urllib.request.urlopen(url, timeout=5) as reply:
        assert reply.read().decode("utf-8") == metrics.write()


def test_http_unknown_path_returns_404(running):
    server, _ = running
    with pytest.raises(urllib.error.HTTPError) as info:
        urllib.request.urlopen(f"http://127.0.0.1:{server.port}/other", timeout=5)
    assert info.value.code == HTTPStatus.NOT_FOUND


def test_stop_releases_port():
    server = AuxiliaryServer(0, host="127.0.0.1")
    server.start()
    bound = server.port
    server.stop()
    assert bound > 0
    assert server.port is None