import asyncio
import json

import httpx
import pytest

from src.config import Settings
from src.domain.exceptions import TransientRemoteFailure
from src.infrastructure.http.api_client import BookingApiClient, RemoteRejection


def _call(handler, path="/bus/search", payload=None):
    async def run():
        async with BookingApiClient("http://booking.test", transport=httpx.MockTransport(handler)) as api:
            return await api.post(path, payload or {})

    return asyncio.run(run())


def test_returns_envelope_data():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "data": [{"id": "bus_1"}]})

    data = _call(handler, payload={"origin": "A"})

    assert data == [{"id": "bus_1"}]
    assert seen == {"path": "/bus/search", "body": {"origin": "A"}}


def test_error_envelope_becomes_rejection():
    def handler(request):
        return httpx.Response(
            409,
            json={
                "success": False,
                "code": "UNITS_UNAVAILABLE",
                "message": "Some seats are no longer available",
                "data": {"unitIds": ["S3"]},
            },
        )

    with pytest.raises(RemoteRejection) as exc_info:
        _call(handler, path="/bus/block")

    assert exc_info.value.status_code == 409
    assert exc_info.value.code == "UNITS_UNAVAILABLE"
    assert exc_info.value.data == {"unitIds": ["S3"]}


def test_success_false_with_200_is_rejection():
    def handler(request):
        return httpx.Response(200, json={"success": False, "message": "No buses"})

    with pytest.raises(RemoteRejection):
        _call(handler)


@pytest.mark.parametrize("status_code", [500, 502, 503, 429])
def test_server_errors_are_transient(status_code):
    def handler(request):
        return httpx.Response(status_code, json={"success": False})

    with pytest.raises(TransientRemoteFailure):
        _call(handler)


def test_network_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientRemoteFailure):
        _call(handler)


def test_timeouts_are_transient():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransientRemoteFailure):
        _call(handler)


def test_non_json_body_is_transient():
    def handler(request):
        return httpx.Response(200, text="<html>gateway</html>")

    with pytest.raises(TransientRemoteFailure):
        _call(handler)


def test_from_settings_uses_configured_base_url():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"success": True, "data": []})

    settings = Settings(api_base_url="http://bookings.internal:9000")

    async def run():
        async with BookingApiClient.from_settings(
            settings, transport=httpx.MockTransport(handler)
        ) as api:
            return await api.post("/bus/search", {})

    assert asyncio.run(run()) == []
    assert seen["url"] == "http://bookings.internal:9000/bus/search"
