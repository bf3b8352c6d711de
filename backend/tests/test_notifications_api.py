from datetime import timedelta
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from classifieds import main
from classifieds.errors import NotificationError
from classifieds.main import app
from classifieds.store import store
from factories import food_payload, inline_png, job_payload, register, vehicle_payload

client = TestClient(app)

EXPO_B = "ExponentPushToken[bbbbbbbbbbbbbbbbbbbbbb]"
EXPO_C = "ExponentPushToken[cccccccccccccccccccccc]"


def _user(user_id: str) -> dict:
    return main.persistence.get("users", UUID(user_id))


def test_new_job_notifies_other_user_once() -> None:
    alice = register(client, "alice", push_token="ExponentPushToken[aaaaaaaaaaaaaaaaaaaaaa]")
    bob = register(client, "bob", push_token=EXPO_B)

    res = client.post(
        "/api/v1/ads/job",
        json=job_payload(title="Night baker", images=[inline_png()]),
        headers=alice["headers"],
    )

    assert res.status_code == 201
    ad = res.json()
    assert ad["images"][0].startswith("https://objects.local/")
    assert ad["user"]["id"] == alice["id"]
    assert ad["owner"] == alice["id"]

    sent = main.push_gateway.sent
    assert len(sent) == 1
    assert sent[0].to == EXPO_B
    assert "Night baker" in sent[0].body
    assert _user(bob["id"])["notificationCount"] == 1
    assert _user(alice["id"])["notificationCount"] == 0


def test_users_without_valid_token_are_skipped() -> None:
    alice = register(client, "alice")
    register(client, "bob")
    register(client, "carol", push_token="not-a-push-token")

    res = client.post("/api/v1/ads/job", json=job_payload(), headers=alice["headers"])

    assert res.status_code == 201
    assert main.push_gateway.batches == []


def test_daily_cap_blocks_today_and_resets_for_yesterday() -> None:
    alice = register(client, "alice")
    bob = register(client, "bob", push_token=EXPO_B)
    carol = register(client, "carol", push_token=EXPO_C)
    now = store.now()
    main.persistence.update_own_fields(
        "users", UUID(bob["id"]), {"notificationCount": 5, "lastNotificationDate": now}
    )
    main.persistence.update_own_fields(
        "users", UUID(carol["id"]), {"notificationCount": 5, "lastNotificationDate": now - timedelta(days=1)}
    )

    res = client.post("/api/v1/ads/job", json=job_payload(), headers=alice["headers"])

    assert res.status_code == 201
    assert [m.to for m in main.push_gateway.sent] == [EXPO_C]
    assert _user(bob["id"])["notificationCount"] == 5
    carol_row = _user(carol["id"])
    assert carol_row["notificationCount"] == 1
    assert carol_row["lastNotificationDate"].date() == now.date()


def test_vehicle_cap_is_two_per_day() -> None:
    alice = register(client, "alice")
    bob = register(client, "bob", push_token=EXPO_B)
    for idx in range(3):
        res = client.post("/api/v1/ads/vehicle", json=vehicle_payload(title=f"Car {idx}"), headers=alice["headers"])
        assert res.status_code == 201

    assert len(main.push_gateway.sent) == 2
    assert _user(bob["id"])["notificationCount"] == 2


def test_food_ads_send_no_notifications() -> None:
    alice = register(client, "alice")
    register(client, "bob", push_token=EXPO_B)

    res = client.post("/api/v1/ads/food", json=food_payload(), headers=alice["headers"])

    assert res.status_code == 201
    assert main.push_gateway.sent == []


def test_gateway_failure_does_not_fail_creation(monkeypatch: pytest.MonkeyPatch) -> None:
    alice = register(client, "alice")
    bob = register(client, "bob", push_token=EXPO_B)

    def broken_send(messages):
        raise NotificationError("expo unreachable")

    monkeypatch.setattr(main.push_gateway, "send_batch", broken_send)
    res = client.post("/api/v1/ads/job", json=job_payload(), headers=alice["headers"])

    assert res.status_code == 201
    # Counters are not rolled back.
    assert _user(bob["id"])["notificationCount"] == 1
