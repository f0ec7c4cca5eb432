"""Gateway client against a local aiohttp server."""
import asyncio

import pytest
from aiohttp import web
from aiohttp import test_utils

from settlement_system.exceptions import GatewayApplicationError, GatewayTransportError
from settlement_system.integrations.payment_gateway import PaymentGatewayClient


def _token_ok(request):
    return web.json_response({"code": 0, "message": None, "response": {"access_token": "tok", "now": 1, "expired_at": 2}})


async def _with_gateway(routes, action):
    app = web.Application()
    for path, handler in routes.items():
        app.router.add_post(path, handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        client = PaymentGatewayClient(
            base_url=str(server.make_url("")), imp_key="key", imp_secret="secret", timeout_seconds=2
        )
        return await action(client)
    finally:
        await server.close()


def test_cancel_payment_sends_bearer_token():
    seen = {}

    async def cancel(request):
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = await request.json()
        return web.json_response({"code": 0, "response": {"imp_uid": seen["body"]["imp_uid"], "status": "cancelled"}})

    result = asyncio.run(_with_gateway(
        {"/users/getToken": _token_ok, "/payments/cancel": cancel},
        lambda c: c.cancel_payment("imp_9"),
    ))
    assert result.imp_uid == "imp_9"
    assert result.status == "cancelled"
    assert seen == {"auth": "Bearer tok", "body": {"imp_uid": "imp_9"}}


def test_non_zero_code_is_application_error():
    async def cancel(request):
        return web.json_response({"code": 1, "message": "already cancelled", "response": None})

    with pytest.raises(GatewayApplicationError) as exc:
        asyncio.run(_with_gateway(
            {"/users/getToken": _token_ok, "/payments/cancel": cancel},
            lambda c: c.cancel_payment("imp_9"),
        ))
    assert "already cancelled" in str(exc.value)


def test_unavailable_gateway_is_transport_error():
    async def unavailable(request):
        return web.json_response({"code": -1}, status=503)

    with pytest.raises(GatewayTransportError):
        asyncio.run(_with_gateway({"/users/getToken": unavailable}, lambda c: c.get_access_token()))


def test_client_error_status_is_application_error():
    async def unauthorized(request):
        return web.json_response({"code": -1, "message": "unauthorized"}, status=401)

    with pytest.raises(GatewayApplicationError) as exc:
        asyncio.run(_with_gateway({"/users/getToken": unauthorized}, lambda c: c.get_access_token()))
    assert exc.value.status_code == 401


def test_missing_credentials_rejected_without_request():
    client = PaymentGatewayClient(base_url="http://127.0.0.1:9", imp_key=None, imp_secret=None)
    client._imp_key = None
    client._imp_secret = None
    with pytest.raises(GatewayApplicationError):
        asyncio.run(client.get_access_token())


def test_connection_refused_is_transport_error():
    # Port 9 (discard) is not listening in test environments
    client = PaymentGatewayClient(base_url="http://127.0.0.1:9", imp_key="k", imp_secret="s", timeout_seconds=1)
    with pytest.raises(GatewayTransportError):
        asyncio.run(client.get_access_token())


def test_prepare_payment_returns_response_body():
    async def prepare(request):
        body = await request.json()
        return web.json_response({"code": 0, "response": {"merchant_uid": body["merchant_uid"], "amount": body["amount"]}})

    async def action(client):
        token = await client.get_access_token()
        return await client.create_payment({"merchant_uid": "order_1", "amount": 15000}, token)

    result = asyncio.run(_with_gateway({"/users/getToken": _token_ok, "/payments/prepare": prepare}, action))
    assert result == {"merchant_uid": "order_1", "amount": 15000}


def test_html_error_page_is_application_error():
    async def proxy_error(request):
        return web.Response(status=500, text="<html><body>Internal Server Error</body></html>", content_type="text/html")

    with pytest.raises(GatewayApplicationError) as exc:
        asyncio.run(_with_gateway(
            {"/users/getToken": _token_ok, "/payments/cancel": proxy_error},
            lambda c: c.cancel_payment("imp_9"),
        ))
    assert exc.value.status_code == 500


def test_non_json_success_body_is_application_error():
    async def garbled(request):
        return web.Response(status=200, text="not json", content_type="text/plain")

    with pytest.raises(GatewayApplicationError) as exc:
        asyncio.run(_with_gateway({"/users/getToken": garbled}, lambda c: c.get_access_token()))
    assert "Malformed" in str(exc.value)
