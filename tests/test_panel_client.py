import json

import httpx
import pytest

from panel.api_client import PterodactylClient, APIResult
from panel.config import PanelConfig


def make_client(handler) -> PterodactylClient:
    config = PanelConfig(base_url="https://panel.test/", api_key="ptla_key", retry_count=3, retry_delay=0)
    return PterodactylClient(config=config, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_suspend_calls_application_api():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    client = make_client(handler)
    response = await client.suspend_server(42)
    await client.close()

    assert response.ok
    assert response.result == APIResult.SUCCESS
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/application/servers/42/suspend"
    assert seen[0].headers["Authorization"] == "Bearer ptla_key"


@pytest.mark.asyncio
async def test_conflict_counts_as_done():
    client = make_client(lambda request: httpx.Response(409, json={"errors": [{"detail": "already suspended"}]}))

    response = await client.unsuspend_server(42)
    await client.close()

    assert response.result == APIResult.CONFLICT
    assert response.ok


@pytest.mark.asyncio
async def test_server_error_carries_panel_detail():
    client = make_client(
        lambda request: httpx.Response(500, json={"errors": [{"code": "HttpException", "detail": "Daemon offline"}]})
    )

    response = await client.suspend_server(42)
    await client.close()

    assert not response.ok
    assert response.status_code == 500
    assert response.error == "Daemon offline"


@pytest.mark.asyncio
async def test_missing_server():
    client = make_client(lambda request: httpx.Response(404))

    response = await client.delete_server(7)
    await client.close()

    assert response.result == APIResult.NOT_FOUND
    assert not response.ok


@pytest.mark.asyncio
async def test_timeouts_are_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) < 3:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(204)

    client = make_client(handler)
    response = await client.suspend_server(42)
    await client.close()

    assert response.ok
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_gives_up_after_retry_count():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("refused", request=request)

    client = make_client(handler)
    response = await client.suspend_server(42)
    await client.close()

    assert response.result == APIResult.ERROR
    assert response.status_code == 0
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_create_is_never_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(json.loads(request.content))
        raise httpx.ReadTimeout("timed out", request=request)

    client = make_client(handler)
    response = await client.create_server(
        name="survival",
        user_id=7,
        egg_id=5,
        nest_id=1,
        location_id=2,
        ram=2048,
        cpu=100,
        disk=10240,
        databases=1,
        backups=1,
        allocations=1,
        docker_image="ghcr.io/pterodactyl/yolks:java_17",
        startup="java -jar server.jar",
        environment={}
    )
    await client.close()

    assert not response.ok
    assert len(attempts) == 1
    assert attempts[0]["limits"]["memory"] == 2048
    assert attempts[0]["deploy"]["locations"] == [2]


@pytest.mark.asyncio
async def test_health_check():
    client = make_client(lambda request: httpx.Response(200, json={"object": "list", "data": []}))

    assert await client.health_check() is True
    await client.close()


@pytest.mark.asyncio
async def test_update_build_keeps_primary_allocation():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "GET":
            return httpx.Response(
                200,
                json={"object": "server", "attributes": {"id": 42, "allocation": 17, "limits": {"swap": 0, "io": 500}}}
            )
        return httpx.Response(200, json={"object": "server", "attributes": {"id": 42}})

    client = make_client(handler)
    response = await client.update_server_build(
        42, ram=4096, cpu=200, disk=20480, databases=2, backups=1, allocations=1
    )
    await client.close()

    assert response.ok
    patch = seen[1]
    assert (patch.method, patch.url.path) == ("PATCH", "/api/application/servers/42/build")
    body = json.loads(patch.content)
    assert body["allocation"] == 17
    assert (body["memory"], body["cpu"], body["disk"]) == (4096, 200, 20480)
    assert body["feature_limits"] == {"databases": 2, "backups": 1, "allocations": 1}


@pytest.mark.asyncio
async def test_update_build_stops_when_server_lookup_fails():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(404)

    client = make_client(handler)
    response = await client.update_server_build(
        42, ram=4096, cpu=200, disk=20480, databases=2, backups=1, allocations=1
    )
    await client.close()

    assert response.result == APIResult.NOT_FOUND
    assert [r.method for r in seen] == ["GET"]
