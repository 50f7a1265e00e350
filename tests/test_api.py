"""
Tests for the HTTP API.

Routes run against a scripted stand-in for the switch connection, so these
tests cover request handling and response shapes only.
"""

import json
import time

import pytest
from fastapi.testclient import TestClient

from fs_gateway.api.server import create_app
from fs_gateway.esl.connection import ConnectionState
from fs_gateway.esl.frame import Event
from fs_gateway.esl.result import CommandResult
from fs_gateway.utils.config import Config
from fs_gateway.utils.errors import CommandTimeoutError, NotConnectedError

class FakeConnection:
    """Answers commands from a dict; unknown commands answer an empty string."""

    def __init__(self, replies=None, connected=True):
        self.replies = replies or {}
        self.connected = connected
        self.sent = []
        self.started = False
        self.stopped = False

    @property
    def is_connected(self):
        return self.connected

    @property
    def state(self):
        return ConnectionState.READY if self.connected else ConnectionState.RECONNECTING

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    async def send(self, command, timeout=None):
        if not self.connected:
            raise NotConnectedError()
        self.sent.append(command)
        reply = self.replies.get(command, "")
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def api(self, command, expect_json=False, timeout=None):
        text = await self.send(command, timeout)
        return CommandResult.from_json(text) if expect_json else CommandResult.raw(text)

    async def submit_background(self, command, timeout=None):
        self.sent.append(f"bgapi {command}")
        return "job-1234"

    async def wait_background_job(self, job_uuid, timeout=None):
        return "+OK 5d3c1f9e\n"

    def snapshot(self):
        return {"state": self.state.value, "connected": self.connected}

@pytest.fixture
def connection():
    return FakeConnection()

@pytest.fixture
def client(connection):
    app = create_app(Config.from_dict({}), connection=connection)
    with TestClient(app) as test_client:
        yield test_client

def table(*rows):
    return json.dumps({"row_count": len(rows), "rows": list(rows)})

class TestStatusRoutes:
    """Test the gateway's own status endpoints."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["message"] == "FreeSWITCH Integration Server"
        assert response.json()["status"] == "running"

    def test_status(self, client):
        body = client.get("/status").json()

        assert body["freeswitch_connected"] is True
        assert body["connection_state"] == "ready"
        assert body["server_status"] == "online"
        assert body["process"]["pid"] > 0
        assert "memory_mb" in body["process"]

    def test_health_connected(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_disconnected(self, client, connection):
        connection.connected = False

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json() == {
            "status": "unhealthy",
            "freeswitch": "disconnected",
            "connection_state": "reconnecting",
        }

    def test_lifespan_starts_and_stops_connection(self, connection):
        app = create_app(Config.from_dict({}), connection=connection)

        with TestClient(app):
            assert connection.started
            assert not connection.stopped

        assert connection.stopped

    def test_response_headers(self, client):
        response = client.get("/")

        assert "X-Request-ID" in response.headers
        assert response.headers["X-Process-Time"].endswith("ms")

class TestRealtimeRoutes:
    """Test live-state endpoints."""

    def test_calls(self, client, connection):
        connection.replies["show calls as json"] = table({"uuid": "abc", "cid_num": "1000"})

        body = client.get("/api/calls").json()

        assert body["success"] is True
        assert body["total_calls"] == 1
        assert body["calls"] == [{"uuid": "abc", "cid_num": "1000"}]
        assert "timestamp" in body

    def test_calls_when_none_active(self, client, connection):
        connection.replies["show calls as json"] = '{"row_count": 0}'

        body = client.get("/api/calls").json()

        assert body["total_calls"] == 0
        assert body["calls"] == []

    @pytest.mark.parametrize("path,command,total_key,rows_key", [
        ("/api/channels", "show channels as json", "total_channels", "channels"),
        ("/api/registrations", "show registrations as json", "total_registrations", "registrations"),
        ("/api/gateways", "sofia status gateway as json", "total_gateways", "gateways"),
        ("/api/modules", "show modules as json", "total_modules", "modules"),
        ("/api/tasks", "show tasks as json", "total_tasks", "tasks"),
    ])
    def test_json_tables(self, client, connection, path, command, total_key, rows_key):
        connection.replies[command] = table({"name": "a"}, {"name": "b"})

        body = client.get(path).json()

        assert connection.sent == [command]
        assert body[total_key] == 2
        assert body[rows_key] == [{"name": "a"}, {"name": "b"}]

    def test_non_json_output_is_an_error(self, client, connection):
        connection.replies["show calls as json"] = "-ERR show Command not found!\n"

        response = client.get("/api/calls")

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert response.json()["code"] == "result-parse-error"

    @pytest.mark.parametrize("path,command,field", [
        ("/api/system/status", "status", "status"),
        ("/api/sip/profiles", "sofia status", "profiles"),
        ("/api/codecs", "show codec", "codecs"),
    ])
    def test_text_output(self, client, connection, path, command, field):
        connection.replies[command] = "some output\n"

        body = client.get(path).json()

        assert body[field] == "some output\n"

    def test_call_stats(self, client, connection):
        connection.replies["show calls count"] = "\n3 total.\n"

        assert client.get("/api/stats/calls").json()["active_calls"] == 3

    def test_call_details(self, client, connection):
        connection.replies["uuid_dump abc-123"] = (
            "Event-Name: CHANNEL_DATA\n"
            "Channel-State: CS_EXECUTE\n"
            "variable_sip_contact_uri: sip:1000@10.0.0.5:5060\n"
            "garbage line\n"
        )

        body = client.get("/api/calls/abc-123").json()

        assert body["uuid"] == "abc-123"
        assert body["call_info"] == {
            "Event-Name": "CHANNEL_DATA",
            "Channel-State": "CS_EXECUTE",
            "variable_sip_contact_uri": "sip:1000@10.0.0.5:5060",
        }

    def test_system_info(self, client, connection):
        connection.replies.update({
            "status": "UP 0 years, 1 day\n",
            "strepoch": "1700000000\n",
            "show sessions as json": table({"id": 1}, {"id": 2}, {"id": 3}),
        })

        body = client.get("/api/system/info").json()

        assert body["system"] == {
            "status": "UP 0 years, 1 day\n",
            "uptime_epoch": "1700000000",
            "total_sessions": 3,
        }

    def test_commands(self, client, connection):
        connection.replies["show api"] = "name,description,syntax\n\nstatus,,\nuuid_kill,,\n"

        body = client.get("/api/commands").json()

        assert body["total_commands"] == 3
        assert body["commands"][1] == "status,,"

class TestCallRoutes:
    """Test originate and hangup."""

    def test_originate(self, client, connection):
        connection.replies["originate user/1000 &bridge(user/1001)"] = "+OK 5d3c1f9e\n"

        response = client.post("/api/calls/originate", json={"from": "1000", "to": "1001"})

        assert response.status_code == 200
        assert response.json()["message"] == "Call initiated"
        assert response.json()["response"] == "+OK 5d3c1f9e\n"

    def test_originate_accepts_numbers(self, client, connection):
        client.post("/api/calls/originate", json={"from": 1000, "to": 1001})

        assert connection.sent == ["originate user/1000 &bridge(user/1001)"]

    @pytest.mark.parametrize("payload", [{"from": "1000"}, {"to": "1001"}, {"from": "", "to": "1001"}, {}])
    def test_originate_requires_both_parties(self, client, connection, payload):
        response = client.post("/api/calls/originate", json=payload)

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["error"] == "Both 'from' and 'to' parameters are required"
        assert connection.sent == []

    def test_originate_without_body(self, client):
        response = client.post("/api/calls/originate")

        assert response.status_code == 400

    def test_originate_in_background(self, client, connection):
        response = client.post(
            "/api/calls/originate",
            json={"from": "1000", "to": "1001", "background": True}
        )

        body = response.json()
        assert body["job_uuid"] == "job-1234"
        assert body["response"] == "+OK 5d3c1f9e\n"
        assert connection.sent == ["bgapi originate user/1000 &bridge(user/1001)"]

    def test_originate_rejects_injection(self, client, connection):
        response = client.post(
            "/api/calls/originate",
            json={"from": "1000 &park", "to": "1001"}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "invalid-parameter"
        assert connection.sent == []

    def test_hangup(self, client, connection):
        connection.replies["uuid_kill abc-123"] = "+OK\n"

        body = client.delete("/api/calls/abc-123").json()

        assert body == {
            "success": True,
            "message": "Call terminated",
            "uuid": "abc-123",
            "response": "+OK\n",
            "timestamp": body["timestamp"],
        }

class TestConfigurationRoutes:
    """Test stored-data and configuration endpoints."""

    def test_recent_cdr(self, client, connection):
        client.get("/api/cdr/recent")
        client.get("/api/cdr/recent?limit=5")

        assert connection.sent == ["cdr_csv recent 100", "cdr_csv recent 5"]

    def test_recent_cdr_invalid_limit(self, client, connection):
        response = client.get("/api/cdr/recent?limit=0")

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert connection.sent == []

    def test_voicemail(self, client, connection):
        body = client.get("/api/voicemail/1000?domain=example.com").json()

        assert connection.sent == ["vm_fsdb pref example.com/1000"]
        assert body["user"] == "1000"
        assert body["domain"] == "example.com"

    @pytest.mark.parametrize("path,command", [
        ("/api/config/dialplan", "xml_locate dialplan"),
        ("/api/config/directory", "xml_locate directory domain name default"),
        ("/api/users/1000", "user_data 1000@default"),
        ("/api/config/sofia/internal", "sofia status profile internal"),
        ("/api/config/xml", "xml_locate configuration"),
        ("/api/config/xml?section=directory", "xml_locate directory"),
        ("/api/config/aliases", "alias"),
        ("/api/config/nat", "nat_map status"),
    ])
    def test_command_mapping(self, client, connection, path, command):
        response = client.get(path)

        assert response.status_code == 200
        assert connection.sent == [command]

    def test_global_variables(self, client, connection):
        connection.replies["global_getvar"] = (
            "hostname=pbx\n"
            "sound_prefix=/usr/share/freeswitch/sounds/en/us/callie\n"
            "codec_string=OPUS,G722,PCMU=PCMA\n"
            "\n"
        )

        body = client.get("/api/config/globals").json()

        assert body["total_variables"] == 3
        assert body["variables"]["codec_string"] == "OPUS,G722,PCMU=PCMA"

    def test_global_variable(self, client, connection):
        connection.replies["global_getvar domain"] = "10.0.0.5\n"

        body = client.get("/api/config/globals/domain").json()

        assert body == {
            "success": True,
            "variable": "domain",
            "value": "10.0.0.5",
            "timestamp": body["timestamp"],
        }

    def test_whitespace_in_parameter_is_rejected(self, client, connection):
        response = client.get("/api/config/globals/domain%20x")

        assert response.status_code == 400
        assert response.json()["code"] == "invalid-parameter"
        assert connection.sent == []

class TestErrorResponses:
    """Test how switch and connection errors reach the client."""

    def test_not_connected(self, client, connection):
        connection.connected = False

        response = client.get("/api/system/status")

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "FreeSWITCH is not connected",
            "code": "not-connected",
        }

    def test_command_timeout(self, client, connection):
        connection.replies["status"] = CommandTimeoutError("Command 'api status' timed out after 5.0s")

        response = client.get("/api/system/status")

        assert response.status_code == 500
        assert response.json()["code"] == "command-timeout"

    def test_error_body_is_documented(self, client):
        schema = client.get("/openapi.json").json()
        responses = schema["paths"]["/api/system/status"]["get"]["responses"]

        for status_code in ("400", "500"):
            ref = responses[status_code]["content"]["application/json"]["schema"]["$ref"]
            assert ref == "#/components/schemas/ErrorResponse"
        assert set(schema["components"]["schemas"]["ErrorResponse"]["properties"]) == {
            "success", "error", "code"
        }

class TestEventStream:
    """Test the websocket event stream."""

    def test_events_are_streamed(self, client):
        dispatcher = client.app.state.dispatcher

        with client.websocket_connect("/ws/events") as websocket:
            deadline = time.monotonic() + 2
            while dispatcher.subscriber_count == 0 and time.monotonic() < deadline:
                time.sleep(0.01)

            client.portal.call(
                dispatcher.publish,
                Event({"Event-Name": "CHANNEL_CREATE", "Unique-ID": "abc"})
            )

            assert websocket.receive_json() == {
                "name": "CHANNEL_CREATE",
                "headers": {"Event-Name": "CHANNEL_CREATE", "Unique-ID": "abc"},
                "body": None,
            }
