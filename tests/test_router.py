import json

import pytest

from gsc_client import GSCApiError

pytestmark = pytest.mark.anyio


def _request(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return json.dumps(message)


async def test_initialize(router):
    routed = await router.handle(_request("initialize", {}))
    assert routed.status_code == 200
    assert routed.payload == {
        "jsonrpc": "2.0",
        "id": 1,
        "result": {
            "protocolVersion": "2024-11-05",
            "capabilities": {"tools": {}},
            "serverInfo": {"name": "gsc-mcp-server", "version": "1.0.0"},
        },
    }


async def test_tools_list_is_stable_and_ordered(router, registry):
    first = await router.handle(_request("tools/list"))
    second = await router.handle(_request("tools/list", request_id=2))

    tools = first.payload["result"]["tools"]
    assert tools == second.payload["result"]["tools"]
    assert len(tools) == len(registry) == 12
    assert [t["name"] for t in tools][:3] == ["list_sites", "get_site_details", "search_analytics"]
    for tool in tools:
        assert tool["inputSchema"]["type"] == "object"
        assert "properties" in tool["inputSchema"]
        assert isinstance(tool["inputSchema"]["required"], list)


async def test_parse_error(router):
    routed = await router.handle(b"{not json")
    assert routed.status_code == 400
    assert routed.payload == {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}}


async def test_non_object_is_invalid_request(router):
    routed = await router.handle("[1, 2]")
    assert routed.status_code == 400
    assert routed.payload["error"]["code"] == -32600


async def test_unknown_method_echoes_id(router):
    routed = await router.handle(_request("resources/list", request_id="abc"))
    assert routed.status_code == 200
    assert routed.payload == {
        "jsonrpc": "2.0",
        "id": "abc",
        "error": {"code": -32601, "message": "Method not found: resources/list"},
    }


async def test_unknown_method_without_id(router):
    routed = await router.handle(json.dumps({"jsonrpc": "2.0", "method": "ping"}))
    assert routed.payload["id"] is None
    assert routed.payload["error"]["code"] == -32601


async def test_initialized_notification_has_no_response(router, store):
    session = store.create()
    routed = await router.handle(json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}), session)
    assert routed.status_code == 204
    assert routed.payload is None

    store.remove(session.id)
    frames = [frame async for frame in session.stream()]
    assert len(frames) == 1  # endpoint only


async def test_unknown_tool_never_builds_a_client(router, client_factory):
    routed = await router.handle(_request("tools/call", {"name": "nope", "arguments": {}}))
    assert routed.payload["error"] == {"code": -32601, "message": "Unknown tool: nope"}
    client_factory.assert_not_called()


async def test_tools_call_requires_object_params(router):
    routed = await router.handle(_request("tools/call", ["list_sites"]))
    assert routed.payload["error"]["code"] == -32602


async def test_tools_call_success(router, gsc_client):
    gsc_client.list_sites.return_value = {"siteEntry": [{"siteUrl": "https://example.com/", "permissionLevel": "siteOwner"}]}

    routed = await router.handle(_request("tools/call", {"name": "list_sites"}))

    content = routed.payload["result"]["content"]
    assert content[0]["type"] == "text"
    assert "https://example.com/" in content[0]["text"]
    assert "Permission: Site Owner" in content[0]["text"]


async def test_tools_call_failure_becomes_internal_error(router, gsc_client):
    gsc_client.list_sites.side_effect = GSCApiError(403, "forbidden", '{"error": {"message": "forbidden"}}')

    routed = await router.handle(_request("tools/call", {"name": "list_sites", "arguments": {}}))

    assert routed.status_code == 200
    assert routed.payload["id"] == 1
    assert routed.payload["error"] == {
        "code": -32603,
        "message": 'Failed to list sites: {"error": {"message": "forbidden"}}',
    }


async def test_unexpected_handler_error_uses_fallback_message(router, gsc_client):
    gsc_client.list_sites.side_effect = RuntimeError()
    routed = await router.handle(_request("tools/call", {"name": "list_sites"}))
    assert routed.payload["error"] == {"code": -32603, "message": "Tool execution failed"}


async def test_response_is_pushed_to_session(router, store):
    session = store.create()
    routed = await router.handle(_request("initialize", {}, request_id=7), session)
    store.remove(session.id)

    frames = [frame async for frame in session.stream()]
    assert len(frames) == 2
    assert json.loads(frames[1][len("data: "):]) == routed.payload


@pytest.mark.parametrize("body", [b"{not json", b"[1, 2]"])
async def test_malformed_envelope_is_not_pushed_to_session(router, store, body):
    session = store.create()
    routed = await router.handle(body, session)
    assert routed.status_code == 400
    store.remove(session.id)

    frames = [frame async for frame in session.stream()]
    assert len(frames) == 1  # endpoint only


async def test_closed_session_still_answers_over_http(router, store):
    session = store.create()
    store.remove(session.id)
    routed = await router.handle(_request("initialize", {}), session)
    assert routed.status_code == 200
    assert routed.payload["result"]["serverInfo"]["name"] == "gsc-mcp-server"
