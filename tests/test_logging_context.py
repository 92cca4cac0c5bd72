"""
Tests for request trace IDs in the logging context.

Concurrent uploads and cleanups of one request run as separate asyncio
tasks; their log lines must all carry that request's trace ID and never
another request's.
"""

import asyncio

import pytest

from service_catalog.core.logging_config import (
    add_app_context,
    clear_trace_id,
    get_trace_id,
    set_trace_id,
)
from service_catalog.services.image_reconciler import ImageSetReconciler
from tests.conftest import make_upload


@pytest.mark.unit
def test_trace_id_set_and_clear():
    set_trace_id("trace-abc")
    assert get_trace_id() == "trace-abc"

    clear_trace_id()
    assert get_trace_id() is None


@pytest.mark.unit
def test_app_context_processor_adds_trace_id():
    set_trace_id("trace-xyz")
    try:
        event = add_app_context(None, "info", {"event": "image_upload_failed"})
    finally:
        clear_trace_id()

    assert event["trace_id"] == "trace-xyz"
    assert event["service"] == "service-catalog"


@pytest.mark.unit
def test_app_context_processor_without_trace_id():
    clear_trace_id()

    event = add_app_context(None, "info", {"event": "application_startup"})

    assert "trace_id" not in event


@pytest.mark.unit
async def test_requests_keep_their_own_trace_id(memory_store):
    """Puts spawned by gather inherit the trace ID of the request that made them."""
    seen = []
    original_put = memory_store.put

    async def recording_put(data, suggested_name, folder):
        await asyncio.sleep(0.001)
        seen.append((folder, get_trace_id()))
        return await original_put(data, suggested_name, folder)

    memory_store.put = recording_put

    async def request(trace_id: str):
        set_trace_id(trace_id)
        reconciler = ImageSetReconciler(memory_store)
        await reconciler.reconcile_single(None, make_upload(trace_id), f"folder-{trace_id}")
        await asyncio.sleep(0.002)
        assert get_trace_id() == trace_id

    await asyncio.gather(request("req-1"), request("req-2"), request("req-3"))

    assert sorted(seen) == [
        ("folder-req-1", "req-1"),
        ("folder-req-2", "req-2"),
        ("folder-req-3", "req-3"),
    ]


@pytest.mark.api
async def test_middleware_generates_trace_id(async_client):
    response = await async_client.get("/api/v1/health")

    trace_id = response.headers["X-Trace-ID"]
    assert trace_id
    assert response.headers["X-Correlation-ID"] == trace_id


@pytest.mark.api
async def test_middleware_accepts_correlation_header(async_client):
    response = await async_client.get("/api/v1/health", headers={"X-Correlation-ID": "upstream-7"})

    assert response.headers["X-Trace-ID"] == "upstream-7"
