"""Tests for Discord failure notifications."""

import json

import httpx
import pytest

from cloud_init_ext.errors import NotificationDeliveryError, PlaybookFailed
from cloud_init_ext.notifications import DiscordWebhookSink, build_failure_payload

WEBHOOK_URL = "https://discord.test/api/webhooks/1/token"


def test_build_failure_payload():
    payload = build_failure_payload("node-7", PlaybookFailed("/srv/ip.yml", 2))

    embed = payload["embeds"][0]
    assert embed["title"] == "Provision failed"
    assert embed["description"] == "Failed to provision client 'node-7'"
    assert embed["fields"] == [
        {"name": "Error", "value": "Playbook /srv/ip.yml did not exit successfully (exit code 2)"}
    ]


def test_payload_falls_back_to_error_type():
    payload = build_failure_payload("node-7", RuntimeError())

    assert payload["embeds"][0]["fields"][0]["value"] == "RuntimeError"


@pytest.mark.asyncio
async def test_report_posts_embed():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(204)

    sink = DiscordWebhookSink(WEBHOOK_URL, transport=httpx.MockTransport(handler))

    await sink.report("node-7", PlaybookFailed("/srv/ip.yml", 2))

    assert len(requests) == 1
    assert str(requests[0].url) == WEBHOOK_URL
    body = json.loads(requests[0].content)
    assert body["embeds"][0]["description"] == "Failed to provision client 'node-7'"


@pytest.mark.asyncio
async def test_error_status_raises_delivery_error():
    sink = DiscordWebhookSink(
        WEBHOOK_URL,
        transport=httpx.MockTransport(lambda request: httpx.Response(429, text="rate limited")),
    )

    with pytest.raises(NotificationDeliveryError, match="429"):
        await sink.report("node-7", RuntimeError("boom"))


@pytest.mark.asyncio
async def test_transport_error_raises_delivery_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    sink = DiscordWebhookSink(WEBHOOK_URL, transport=httpx.MockTransport(handler))

    with pytest.raises(NotificationDeliveryError, match="unreachable"):
        await sink.report("node-7", RuntimeError("boom"))


@pytest.mark.asyncio
async def test_missing_webhook_skips_delivery():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    sink = DiscordWebhookSink("", transport=httpx.MockTransport(handler))

    await sink.report("node-7", RuntimeError("boom"))
