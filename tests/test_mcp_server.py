"""Tests for the MCP endpoint served over Streamable HTTP and the application factory."""

import asyncio
import json
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock, MagicMock, patch

import mcp.types as types
import pytest
from fastapi.testclient import TestClient

from hcm_gateway.infra.error_handler import ErrorKind
from hcm_gateway.main import create_app, run
from hcm_gateway.models.tool import ToolCall, ToolFailure, ToolSuccess
from hcm_gateway.services.tool_registry import ToolRegistry

ACCEPT = "application/json, text/event-stream"


def rpc(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    if request_id is not None:
        message["id"] = request_id
    return message


class McpSession:
    """One MCP client session over the /mcp endpoint."""

    def __init__(self, client):
        self.client = client
        self.session_id = None
        self.protocol_version = types.LATEST_PROTOCOL_VERSION

    def headers(self):
        headers = {"Accept": ACCEPT, "Content-Type": "application/json"}
        if self.session_id is not None:
            headers["mcp-session-id"] = self.session_id
            headers["mcp-protocol-version"] = self.protocol_version
        return headers

    def post(self, message):
        return self.client.post("/mcp", content=json.dumps(message), headers=self.headers())

    def initialize(self, protocol_version=types.LATEST_PROTOCOL_VERSION):
        response = self.post(
            rpc(
                "initialize",
                {
                    "protocolVersion": protocol_version,
                    "capabilities": {},
                    "clientInfo": {"name": "test-client", "version": "1.0"},
                },
                request_id=0,
            )
        )
        assert response.status_code == 200
        self.session_id = response.headers["mcp-session-id"]
        result = response.json()["result"]
        self.protocol_version = result["protocolVersion"]

        assert self.post(rpc("notifications/initialized", request_id=None)).status_code == 202
        return result

    def request(self, method, params=None, request_id=1):
        return self.post(rpc(method, params, request_id)).json()

    def call_tool(self, name, arguments=None, request_id=1):
        params = {"name": name}
        if arguments is not None:
            params["arguments"] = arguments
        return self.request("tools/call", params, request_id)


@pytest.fixture
def config(config):
    config.MCP_JSON_RESPONSE = True
    return config


@pytest.fixture
def dispatcher():
    mock = MagicMock()
    mock.dispatch = AsyncMock(return_value=ToolSuccess(payload={"PersonId": "300000578701661"}))
    return mock


@pytest.fixture
def app(config, worker_tool, dispatcher):
    return create_app(config=config, registry=ToolRegistry([worker_tool]), dispatcher=dispatcher)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def session(client):
    mcp_session = McpSession(client)
    mcp_session.initialize()
    return mcp_session


class TestSessionLifecycle:
    """initialize, session ids and ping."""

    def test_initialize(self, client):
        result = McpSession(client).initialize()

        assert result["protocolVersion"] == types.LATEST_PROTOCOL_VERSION
        assert "tools" in result["capabilities"]
        assert result["serverInfo"]["name"] == "oracle-hcm-mcp-gateway"
        assert result["serverInfo"]["version"] == "0.1.0"
        assert "PersonId" in result["instructions"]

    def test_initialize_unknown_version_gets_latest(self, client):
        result = McpSession(client).initialize(protocol_version="1999-01-01")
        assert result["protocolVersion"] == types.LATEST_PROTOCOL_VERSION

    def test_sessions_get_distinct_ids(self, client):
        first = McpSession(client)
        second = McpSession(client)
        first.initialize()
        second.initialize()

        assert first.session_id != second.session_id

    def test_ping(self, session):
        assert session.request("ping", request_id="abc") == {"jsonrpc": "2.0", "id": "abc", "result": {}}

    def test_unknown_session_rejected(self, client, dispatcher):
        stranger = McpSession(client)
        stranger.session_id = "not-a-session"

        response = stranger.post(rpc("tools/call", {"name": "getWorker", "arguments": {"workerId": "1"}}))

        assert response.status_code in (400, 404)
        dispatcher.dispatch.assert_not_called()

    def test_endpoint_unavailable_outside_lifespan(self, app):
        response = TestClient(app).post("/mcp", content=json.dumps(rpc("ping")), headers={"Accept": ACCEPT})
        assert response.status_code == 503


class TestToolsList:
    def test_lists_registered_tools(self, session):
        tools = session.request("tools/list")["result"]["tools"]

        assert len(tools) == 1
        assert tools[0]["name"] == "getWorker"
        assert tools[0]["description"] == "Get a worker by ID"
        assert tools[0]["inputSchema"] == {
            "type": "object",
            "properties": {"workerId": {"type": "string", "description": "Worker ID"}},
            "required": ["workerId"],
            "additionalProperties": False,
        }

    def test_lists_builtin_catalog_in_order(self, config, dispatcher):
        app = create_app(config=config, dispatcher=dispatcher)
        with TestClient(app) as test_client:
            mcp_session = McpSession(test_client)
            mcp_session.initialize()
            tools = mcp_session.request("tools/list")["result"]["tools"]

        assert [tool["name"] for tool in tools] == [
            "get_all_absence_balances_for_employee_hcm_person_id",
            "get_projected_balance",
            "get_absence_types_for_employee_hcm_person_id",
            "get_oracle_hcm_person_id_from_westpac_id",
        ]


class TestToolsCall:
    """tools/call results and error mapping."""

    def test_success(self, session, dispatcher):
        result = session.call_tool("getWorker", {"workerId": "100"})["result"]

        assert result["isError"] is False
        assert result["structuredContent"] == {"PersonId": "300000578701661"}
        assert result["content"][0]["type"] == "text"
        assert json.loads(result["content"][0]["text"]) == {"PersonId": "300000578701661"}
        dispatcher.dispatch.assert_awaited_once_with(ToolCall(tool_name="getWorker", arguments={"workerId": "100"}))

    def test_list_payload_has_no_structured_content(self, session, dispatcher):
        dispatcher.dispatch.return_value = ToolSuccess(payload=[1, 2])
        result = session.call_tool("getWorker", {"workerId": "1"})["result"]

        assert "structuredContent" not in result
        assert result["content"][0]["text"] == "[1, 2]"

    def test_remote_failure_is_tool_error(self, session, dispatcher):
        dispatcher.dispatch.return_value = ToolFailure(error_kind=ErrorKind.REMOTE_4XX, message="HCM returned HTTP 404")
        body = session.call_tool("getWorker", {"workerId": "100"})

        assert "error" not in body
        assert body["result"]["isError"] is True
        assert body["result"]["structuredContent"] == {
            "error_kind": "remote_4xx",
            "message": "HCM returned HTTP 404",
        }
        assert body["result"]["content"][0]["text"] == "remote_4xx: HCM returned HTTP 404"

    @pytest.mark.parametrize("kind", [ErrorKind.VALIDATION, ErrorKind.UNKNOWN_TOOL])
    def test_caller_errors_are_invalid_params(self, session, dispatcher, kind):
        dispatcher.dispatch.return_value = ToolFailure(error_kind=kind, message="bad call")
        error = session.call_tool("getWorker", {})["error"]

        assert error["code"] == types.INVALID_PARAMS
        assert error["message"] == "bad call"
        assert error["data"] == {"error_kind": kind.value}

    def test_arguments_default_to_empty(self, session, dispatcher):
        session.call_tool("getWorker")
        dispatcher.dispatch.assert_awaited_once_with(ToolCall(tool_name="getWorker", arguments={}))

    def test_real_dispatcher_rejects_bad_calls_without_calling_hcm(self, config):
        app = create_app(config=config)
        with TestClient(app) as test_client:
            mcp_session = McpSession(test_client)
            mcp_session.initialize()
            unknown = mcp_session.call_tool("getManager", {"workerId": "1"})
            missing = mcp_session.call_tool("get_projected_balance", {}, request_id=2)

        assert unknown["error"]["data"] == {"error_kind": "unknown_tool"}
        assert missing["error"]["code"] == types.INVALID_PARAMS
        assert missing["error"]["data"] == {"error_kind": "validation"}


class TestJsonRpcErrors:
    def test_parse_error(self, session):
        response = session.client.post("/mcp", content=b"{not json", headers=session.headers())

        assert response.status_code == 400
        assert response.json()["error"]["code"] == types.PARSE_ERROR

    def test_unknown_method(self, session):
        assert session.request("resources/list")["error"]["code"] == types.METHOD_NOT_FOUND


class TestCancellation:
    """notifications/cancelled stops the matching call in the sender's session only."""

    def test_cancel_only_touches_the_senders_session(self, config, worker_tool):
        started = {"A": threading.Event(), "B": threading.Event()}
        release_b = threading.Event()
        cancelled = []

        async def dispatch(call):
            who = call.arguments["workerId"]
            started[who].set()
            try:
                while not (who == "B" and release_b.is_set()):
                    await asyncio.sleep(0.01)
            except asyncio.CancelledError:
                cancelled.append(who)
                raise
            return ToolSuccess(payload={"who": who})

        dispatcher = MagicMock()
        dispatcher.dispatch = dispatch
        app = create_app(config=config, registry=ToolRegistry([worker_tool]), dispatcher=dispatcher)

        with TestClient(app) as test_client:
            session_a = McpSession(test_client)
            session_b = McpSession(test_client)
            session_a.initialize()
            session_b.initialize()

            with ThreadPoolExecutor(max_workers=2) as pool:
                # Both sessions use request id 1
                call_a = pool.submit(session_a.call_tool, "getWorker", {"workerId": "A"}, 1)
                call_b = pool.submit(session_b.call_tool, "getWorker", {"workerId": "B"}, 1)
                assert started["A"].wait(5)
                assert started["B"].wait(5)

                response = session_a.post(
                    rpc("notifications/cancelled", {"requestId": 1, "reason": "user aborted"}, None)
                )
                assert response.status_code == 202

                body_a = call_a.result(timeout=5)
                release_b.set()
                body_b = call_b.result(timeout=5)

        assert cancelled == ["A"]
        assert "cancelled" in body_a["error"]["message"].lower()
        assert body_b["result"]["structuredContent"] == {"who": "B"}

    def test_cancel_unknown_request_is_ignored(self, session):
        response = session.post(rpc("notifications/cancelled", {"requestId": 99}, None))
        assert response.status_code == 202
        assert session.request("ping", request_id=2)["result"] == {}


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_ready(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ready", "tools": 1}

    def test_not_ready_before_startup(self, config, worker_tool):
        app = create_app(config=config, registry=ToolRegistry([worker_tool]))
        response = TestClient(app).get("/health/ready")
        assert response.status_code == 503

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "hcm_tool_calls_total" in response.text

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


class TestApplication:
    """Startup builds the real pipeline; bad configuration aborts the process."""

    def test_lifespan_builds_pipeline(self, config):
        app = create_app(config=config)
        with TestClient(app) as test_client:
            assert test_client.get("/health/ready").status_code == 200
            assert app.state.dispatcher is not None
            assert app.state.session_manager is not None
        assert app.state.dispatcher is None
        assert app.state.session_manager is None

    def test_app_restarts_with_fresh_session_manager(self, app):
        with TestClient(app) as test_client:
            McpSession(test_client).initialize()
        with TestClient(app) as test_client:
            McpSession(test_client).initialize()

    def test_lifespan_rejects_bad_ca_bundle(self, config, tmp_path):
        config.HCM_CA_BUNDLE = str(tmp_path / "missing.pem")
        app = create_app(config=config)
        with pytest.raises(Exception, match="not readable"):
            with TestClient(app):
                pass

    def test_run_exits_1_on_missing_config(self, config):
        config.HCM_BASE_URL = None
        with patch("hcm_gateway.main.get_config", return_value=config):
            with pytest.raises(SystemExit) as exc_info:
                run()
        assert exc_info.value.code == 1

    def test_run_exits_1_on_unreadable_ca_bundle(self, config, tmp_path):
        config.HCM_CA_BUNDLE = str(tmp_path / "missing.pem")
        with patch("hcm_gateway.main.get_config", return_value=config):
            with pytest.raises(SystemExit) as exc_info:
                run()
        assert exc_info.value.code == 1

    def test_run_exits_0_after_graceful_shutdown(self, config):
        server = MagicMock(started=True)
        with patch("hcm_gateway.main.get_config", return_value=config), \
                patch("hcm_gateway.main.uvicorn.Server", return_value=server):
            with pytest.raises(SystemExit) as exc_info:
                run()
        server.run.assert_called_once()
        assert exc_info.value.code == 0
