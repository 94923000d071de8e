# Port Watch tests
from __future__ import annotations

import asyncio
import socket
import time

import httpx

from conftest import mock_client, serve_raw
from portwatch.probe import (
    TIMEOUT_ERROR, ActiveResult, InactiveResult, build_url, extract_title, probe,
)


def test_build_url_normalizes_path() -> None:
    assert build_url("localhost", 3000, "health") == "http://localhost:3000/health"
    assert build_url("localhost", 3000, "/health") == "http://localhost:3000/health"
    assert build_url("localhost", 3000, "") == "http://localhost:3000/"
    assert build_url("localhost", 3000, None) == "http://localhost:3000/"


def test_extract_title_first_match_trimmed() -> None:
    html = '<html><head><TITLE lang="en">  My App  </TITLE><title>Other</title></head></html>'
    assert extract_title(html) == "My App"
    assert extract_title("<p>no title here</p>") is None
    assert extract_title("<title>   </title>") is None


def test_get_response_is_active_with_title_and_status() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, str(request.url)))
        return httpx.Response(200, text="<html><title>Hi</title></html>")

    async def run():
        async with mock_client(handler) as client:
            return await probe("localhost", 5173, "app", client=client)

    result = asyncio.run(run())
    assert isinstance(result, ActiveResult)
    assert result.page_title == "Hi"
    assert result.http_status == 200
    assert result.response_time_ms >= 0
    assert seen == [("GET", "http://localhost:5173/app")]


def test_error_status_still_counts_as_active() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="down for maintenance")

    async def run():
        async with mock_client(handler) as client:
            return await probe("localhost", 8080, client=client)

    result = asyncio.run(run())
    assert isinstance(result, ActiveResult)
    assert result.http_status == 503
    assert result.page_title is None


def test_failed_get_falls_back_to_opaque_head() -> None:
    methods = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        if request.method == "GET":
            raise httpx.ReadError("connection reset while reading body", request=request)
        return httpx.Response(405)

    async def run():
        async with mock_client(handler) as client:
            return await probe("localhost", 9000, client=client)

    result = asyncio.run(run())
    assert methods == ["GET", "HEAD"]
    assert isinstance(result, ActiveResult)
    assert result.page_title is None
    assert result.http_status is None


def test_both_attempts_failing_reports_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    async def run():
        async with mock_client(handler) as client:
            return await probe("localhost", 9999, client=client, timeout_ms=2000)

    result = asyncio.run(run())
    assert isinstance(result, InactiveResult)
    assert result.error == "Connection refused"
    assert result.response_time_ms < 2000


def test_timeout_reports_configured_timeout() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200)

    async def run():
        async with mock_client(handler) as client:
            started = time.monotonic()
            result = await probe("localhost", 3000, timeout_ms=50, client=client)
            return result, time.monotonic() - started

    result, wall = asyncio.run(run())
    assert isinstance(result, InactiveResult)
    assert result.error == TIMEOUT_ERROR
    assert result.response_time_ms == 50
    assert wall < 1.0


def test_real_server_title_and_status() -> None:
    body = b"<html><head><title>Hi</title></head></html>"
    response = (
        b"HTTP/1.1 404 Not Found\r\n"
        b"Content-Type: text/html\r\n"
        b"Content-Length: " + str(len(body)).encode() + b"\r\n"
        b"Connection: close\r\n\r\n" + body
    )

    async def run():
        server, port = await serve_raw(response)
        try:
            return await probe("127.0.0.1", port, "/", timeout_ms=2000)
        finally:
            server.close()

    result = asyncio.run(run())
    assert isinstance(result, ActiveResult)
    assert result.page_title == "Hi"
    assert result.http_status == 404


def test_real_server_that_never_answers_times_out() -> None:
    async def run():
        server, port = await serve_raw(None)
        try:
            started = time.monotonic()
            result = await probe("127.0.0.1", port, timeout_ms=50)
            return result, time.monotonic() - started
        finally:
            server.close()

    result, wall = asyncio.run(run())
    assert isinstance(result, InactiveResult)
    assert result.error == TIMEOUT_ERROR
    assert result.response_time_ms == 50
    assert wall < 2.0


def test_nothing_listening_is_inactive_with_message() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]

    result = asyncio.run(probe("127.0.0.1", port, timeout_ms=2000))
    assert isinstance(result, InactiveResult)
    assert result.error
    assert result.error != TIMEOUT_ERROR
    assert result.response_time_ms < 2000


def test_response_time_covers_both_attempts() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            await asyncio.sleep(0.1)
            raise httpx.RemoteProtocolError("server disconnected", request=request)
        await asyncio.sleep(0.15)
        return httpx.Response(200)

    async def run():
        async with mock_client(handler) as client:
            return await probe("localhost", 4000, client=client, timeout_ms=2000)

    result = asyncio.run(run())
    assert isinstance(result, ActiveResult)
    assert result.http_status is None
    assert result.response_time_ms >= 250


def test_deadline_beyond_httpx_default_timeout_is_honored() -> None:
    body = b"<title>Slow</title>"
    response = (
        b"HTTP/1.1 200 OK\r\n"
        b"Content-Length: " + str(len(body)).encode() + b"\r\n"
        b"Connection: close\r\n\r\n" + body
    )

    async def run():
        server, port = await serve_raw(response, delay=5.5)
        try:
            # own client, and a shared client left at httpx defaults
            async with httpx.AsyncClient() as shared:
                return await asyncio.gather(
                    probe("127.0.0.1", port, timeout_ms=8000),
                    probe("127.0.0.1", port, timeout_ms=8000, client=shared),
                )
        finally:
            server.close()

    for result in asyncio.run(run()):
        assert isinstance(result, ActiveResult)
        assert result.page_title == "Slow"
        assert result.http_status == 200
        assert 5500 <= result.response_time_ms < 8000
