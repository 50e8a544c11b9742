import json

from app import create_app
from device_map import JsonFileDeviceMapStore
from smartlife_adapter import SmartLifeService
from smartlife_gateway import Config, SmartLifeGateway


def test_admin_round_trip(client) -> None:
    resp = client.post("/admin/device-map", json={"user_id": "u2", "device_name": "fan", "device_id": "dev456"})
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True}

    dump = client.get("/admin/device-map").get_json()
    assert dump == {"u1": {"lamp": "dev123"}, "u2": {"fan": "dev456"}}


def test_admin_post_requires_all_fields(client) -> None:
    for body in (
        {"device_name": "fan", "device_id": "dev456"},
        {"user_id": "u2", "device_id": "dev456"},
        {"user_id": "u2", "device_name": "fan"},
        {},
    ):
        resp = client.post("/admin/device-map", json=body)
        assert resp.status_code == 400
        assert resp.get_json()["ok"] is False


def test_admin_alias_is_usable_by_tool_call(client, vendor) -> None:
    client.post("/admin/device-map", json={"user_id": "u3", "device_name": "desk", "device_id": "dev777"})
    body = client.post(
        "/mcps",
        json={
            "id": 1,
            "method": "tools/call",
            "params": {"name": "smartlife.control", "input": {"user_id": "u3", "device": "desk", "action": "turn_off"}},
        },
    ).get_json()
    assert body["result"]["device_id"] == "dev777"


def test_admin_with_file_store(tmp_path, vendor, clock) -> None:
    path = tmp_path / "device_map.json"
    cfg = Config(base_url="https://vendor.test", client_id="cid", client_secret="secret")
    service = SmartLifeService(JsonFileDeviceMapStore(path), SmartLifeGateway(cfg, transport=vendor, clock=clock))
    client = create_app(service=service).test_client()

    assert client.get("/admin/device-map").get_json() == {}
    client.post("/admin/device-map", json={"user_id": "u1", "device_name": "lamp", "device_id": "dev123"})
    assert client.get("/admin/device-map").get_json() == {"u1": {"lamp": "dev123"}}
    assert json.loads(path.read_text(encoding="utf-8")) == {"u1": {"lamp": "dev123"}}


def test_unknown_route_is_json_404(client) -> None:
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.get_json()["ok"] is False


def test_healthz(client) -> None:
    assert client.get("/healthz").get_json() == {"ok": True}


def test_admin_post_rejects_blank_fields(client) -> None:
    for body in (
        {"user_id": "  ", "device_name": "fan", "device_id": "dev456"},
        {"user_id": "u2", "device_name": " ", "device_id": "dev456"},
        {"user_id": "u2", "device_name": "fan", "device_id": "\t"},
    ):
        resp = client.post("/admin/device-map", json=body)
        assert resp.status_code == 400
    assert client.get("/admin/device-map").get_json() == {"u1": {"lamp": "dev123"}}
