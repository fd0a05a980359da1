"""Server app tests: routes and WebSocket round trip through aiohttp"""
import sys
import os
import asyncio
import tempfile

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from aiohttp import test_utils

from fakes import FakeChannel
from lib.config_loader import load_server_config


def make_config(tmp):
    config = load_server_config()
    config["storage"] = {
        "sequences_file": os.path.join(tmp, "sequences.json"),
        "export_file": os.path.join(tmp, "sequences.txt"),
        "import_file": os.path.join(tmp, "imported_moves.txt"),
    }
    config["http"]["static_dir"] = os.path.join(tmp, "no_static")
    return config


def test_status_and_websocket_round_trip():
    from server import create_app

    async def scenario(tmp):
        channel = FakeChannel()
        app = create_app(make_config(tmp), channel)
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.get('/api/status')
            status = await resp.json()

            ws = await client.ws_connect('/ws')
            await ws.send_json({"event": "move", "data": {"servo": 2, "angle": 45, "speed": 3}})
            await ws.send_json({"event": "saveSequence", "data": [{"servo": 1, "angle": 30, "speed": 5}]})
            await ws.send_json({"event": "getSequences"})
            listing = await ws.receive_json(timeout=5)
            await ws.send_json({"event": "downloadTxt"})
            ready = await ws.receive_json(timeout=5)
            await ws.close()

            resp = await client.get('/api/sequences')
            sequences = await resp.json()
            resp = await client.get('/downloadTxt')
            body = await resp.text()
        return status, listing, ready, sequences, body, channel

    with tempfile.TemporaryDirectory() as tmp:
        status, listing, ready, sequences, body, channel = asyncio.run(scenario(tmp))

    assert status["state"] == "idle"
    assert status["port"] == "/dev/ttyFAKE"
    assert listing == {"event": "sequencesList", "data": [[{"servo": 1, "angle": 30, "speed": 5}]]}
    assert ready["event"] == "txtReady"
    assert ready["data"].endswith("sequences.txt")
    assert sequences == listing["data"]
    assert body == "1,30,5"
    assert channel.sent == ["2,45,3\n"]


def test_main_exits_without_device(monkeypatch):
    import server
    from lib.servo import DeviceUnavailableError

    def no_device(**kwargs):
        raise DeviceUnavailableError("No serial ports available")

    monkeypatch.setattr(server, "open_channel", no_device)
    monkeypatch.setattr(server, "attach_file_handler", lambda *a: None)
    monkeypatch.setattr(server, "create_file_logger", lambda *a: None)
    assert server.main([]) == 1
