"""
Tests for the generation service client against an in-process aiohttp server
"""

import pytest
from aiohttp import web

from exploit_refiner.config import Config
from exploit_refiner.llm_client import GenerationServiceError, LLMClient


async def start_server(handler):
    app = web.Application()
    app.router.add_post("/chat/completions", handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    host, port = runner.addresses[0][:2]
    return runner, f"http://{host}:{port}"


def make_client(base_url, **overrides) -> LLMClient:
    settings = {
        "generation_api_key": "test-key",
        "generation_base_url": base_url,
        "min_request_interval": 0.0,
        **overrides
    }
    return LLMClient(Config(**settings))


@pytest.mark.asyncio
async def test_completion_content_is_returned():
    seen = {}

    async def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        seen["payload"] = await request.json()
        return web.json_response({
            "choices": [{"message": {"content": "```ts\ndescribe('x', () => {});\n```"}}],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}
        })

    runner, base_url = await start_server(handler)
    try:
        client = make_client(base_url)
        content = await client.generate("system", "user")
    finally:
        await runner.cleanup()

    assert "describe('x'" in content
    assert seen["auth"] == "Bearer test-key"
    assert seen["payload"]["venice_parameters"] == {"include_venice_system_prompt": False}
    assert seen["payload"]["messages"][0] == {"role": "system", "content": "system"}
    assert client.get_usage_stats()["total_tokens"] == 15


@pytest.mark.asyncio
async def test_http_error_raises():
    async def handler(request):
        return web.Response(status=401, text="invalid key")

    runner, base_url = await start_server(handler)
    try:
        with pytest.raises(GenerationServiceError, match="401"):
            await make_client(base_url).generate("system", "user")
    finally:
        await runner.cleanup()


@pytest.mark.asyncio
async def test_empty_content_raises():
    async def handler(request):
        return web.json_response({"choices": [{"message": {"content": "   "}}]})

    runner, base_url = await start_server(handler)
    try:
        with pytest.raises(GenerationServiceError, match="empty"):
            await make_client(base_url).generate("system", "user")
    finally:
        await runner.cleanup()


@pytest.mark.asyncio
async def test_unreachable_service_raises():
    client = make_client("http://127.0.0.1:1", request_timeout=5)

    with pytest.raises(GenerationServiceError, match="unreachable"):
        await client.generate("system", "user")


@pytest.mark.asyncio
async def test_missing_key_raises():
    with pytest.raises(GenerationServiceError, match="API key"):
        await make_client("http://127.0.0.1:1", generation_api_key="").generate("system", "user")


@pytest.mark.asyncio
async def test_request_budget_is_enforced():
    client = make_client("http://127.0.0.1:1", max_requests_per_run=0)

    with pytest.raises(GenerationServiceError, match="budget"):
        await client.generate("system", "user")
