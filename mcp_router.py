# mcp_router.py
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from mcp import types

from config import Settings
from gsc_client import GSCClient
from gsc_server import ToolError, ToolRegistry
from logging_config import logger
from sessions import Session, SessionClosed

JSONRPC_VERSION = "2.0"

Payload = Dict[str, Any]
MethodHandler = Callable[[Any, Any], Awaitable[Optional[Payload]]]


@dataclass(frozen=True)
class RoutedResponse:
    """What the transport sends back. ``payload`` None means an empty 204."""

    payload: Optional[Payload]
    status_code: int = 200


def _dump(model) -> Payload:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def _result(request_id: Any, result: Payload) -> Payload:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def _error(request_id: Any, code: int, message: str) -> Payload:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": {"code": code, "message": message}}


class MessageRouter:
    """
    Turns one JSON-RPC message into zero or one responses.

    Only the MCP tool subset is served: ``initialize``, ``tools/list``,
    ``tools/call`` and the ``notifications/initialized`` notification. When a
    session is bound, the response is also pushed onto its SSE stream.
    """

    def __init__(self, registry: ToolRegistry, client_factory: Callable[[], GSCClient], settings: Settings):
        self.registry = registry
        self.client_factory = client_factory
        self.settings = settings
        self._methods: Dict[str, MethodHandler] = {
            "initialize": self._initialize,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "notifications/initialized": self._initialized,
        }

    async def handle(self, body: Union[bytes, str], session: Optional[Session] = None) -> RoutedResponse:
        # Malformed envelopes are answered over HTTP only
        try:
            message = json.loads(body)
        except ValueError:
            return RoutedResponse(_error(None, types.PARSE_ERROR, "Parse error"), 400)
        if not isinstance(message, dict):
            return RoutedResponse(_error(None, types.INVALID_REQUEST, "Invalid Request"), 400)

        slot = None
        if session is not None:
            try:
                slot = session.reserve()
            except SessionClosed:
                logger.warning("Session %s is closed; replying over HTTP only", session.id)

        response: Optional[RoutedResponse] = None
        try:
            response = await self._route(message)
        except Exception:
            logger.exception("Unhandled error while routing message")
            response = RoutedResponse(_error(message.get("id"), types.INTERNAL_ERROR, "Internal error"), 500)
        finally:
            if slot is not None:
                session.deliver(slot, response.payload if response is not None else None)
        return response

    async def _route(self, message: Payload) -> RoutedResponse:
        request_id = message.get("id")
        method = message.get("method")
        handler = self._methods.get(method) if isinstance(method, str) else None
        if handler is None:
            logger.warning("Unknown method: %s", method)
            return RoutedResponse(_error(request_id, types.METHOD_NOT_FOUND, f"Method not found: {method}"))

        logger.debug("Dispatching %s (id=%s)", method, request_id)
        payload = await handler(request_id, message.get("params"))
        return RoutedResponse(payload, 200 if payload is not None else 204)

    async def _initialize(self, request_id: Any, params: Any) -> Payload:
        result = types.InitializeResult(
            protocolVersion=self.settings.protocol_version,
            capabilities=types.ServerCapabilities(tools=types.ToolsCapability()),
            serverInfo=types.Implementation(name=self.settings.server_name, version=self.settings.server_version),
        )
        return _result(request_id, _dump(result))

    async def _initialized(self, request_id: Any, params: Any) -> None:
        # Notification: nothing is sent back
        return None

    async def _list_tools(self, request_id: Any, params: Any) -> Payload:
        return _result(request_id, _dump(types.ListToolsResult(tools=self.registry.describe())))

    async def _call_tool(self, request_id: Any, params: Any) -> Payload:
        if not isinstance(params, dict):
            return _error(request_id, types.INVALID_PARAMS, "Invalid params: params must be an object")
        name = params.get("name")
        tool = self.registry.get(name)
        if tool is None:
            logger.warning("Unknown tool: %s", name)
            return _error(request_id, types.METHOD_NOT_FOUND, f"Unknown tool: {name}")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            return _error(request_id, types.INVALID_PARAMS, "Invalid params: arguments must be an object")

        logger.info("Calling tool %s", name)
        try:
            text = await tool.invoke(arguments, self.client_factory())
        except ToolError as e:
            logger.warning("Tool %s failed: %s", name, e)
            return _error(request_id, types.INTERNAL_ERROR, str(e) or "Tool execution failed")
        except Exception as e:
            logger.exception("Tool %s raised", name)
            return _error(request_id, types.INTERNAL_ERROR, str(e) or "Tool execution failed")

        result = types.CallToolResult(content=[types.TextContent(type="text", text=text)])
        return _result(request_id, _dump(result))
