import base64
from typing import Any

from fastapi.testclient import TestClient

PNG_HEADER = b"\x89PNG\r\n\x1a\n"


def inline_png(seed: str = "a") -> str:
    data = base64.b64encode(PNG_HEADER + seed.encode("utf-8")).decode("ascii")
    return f"data:image/png;base64,{data}"


def register(client: TestClient, username: str, push_token: str | None = None) -> dict[str, Any]:
    res = client.post(
        "/api/v1/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": "Secret123!"},
    )
    assert res.status_code == 201, res.text
    body = res.json()
    headers = {"Authorization": f"Bearer {body['accessToken']}"}
    if push_token:
        token_res = client.post("/api/v1/auth/push-token", json={"token": push_token}, headers=headers)
        assert token_res.status_code == 200
    return {"id": body["user"]["id"], "headers": headers, "refreshToken": body["refreshToken"]}


def job_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "title": "Barista wanted",
        "caption": "Morning shifts in a busy cafe",
        "images": [inline_png()],
        "phoneNumber": "09120000000",
        "income": 1200,
        "location": "Tehran",
        "workingHours": "full-time",
        "paymentType": "monthly",
        "jobTitle": "barista",
    }
    payload.update(overrides)
    return payload


def property_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "title": "Two bedroom flat",
        "type": "rent",
        "location": "Vanak",
        "phoneNumber": "09120000001",
        "city": "Tehran",
        "rentPrice": "30000000",
    }
    payload.update(overrides)
    return payload


def vehicle_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "title": "Peugeot 206",
        "caption": "Clean, single owner",
        "images": [inline_png()],
        "phoneNumber": "09120000002",
        "location": "Shiraz",
        "adType": "sale",
        "brand": "Peugeot",
        "fuelType": "petrol",
    }
    payload.update(overrides)
    return payload


def food_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "title": "Homemade ghormeh sabzi",
        "caption": "Cooked fresh every Friday",
        "images": [inline_png()],
        "location": "Isfahan",
        "address": "Chaharbagh street",
        "price": 250000,
    }
    payload.update(overrides)
    return payload


def apparel_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "title": "Wool winter coat",
        "caption": "Worn twice",
        "images": [inline_png()],
        "phoneNumber": "09120000003",
        "location": "Tabriz",
        "address": "Imam street",
        "status": "used",
    }
    payload.update(overrides)
    return payload


def home_goods_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "title": "Oak dining table",
        "caption": "Seats six",
        "images": [inline_png()],
        "phoneNumber": "09120000004",
        "location": "Karaj",
        "address": "Golshahr",
        "section": "kitchen",
    }
    payload.update(overrides)
    return payload


PAYLOADS = {
    "job": job_payload,
    "property": property_payload,
    "vehicle": vehicle_payload,
    "apparel": apparel_payload,
    "food": food_payload,
    "home-goods": home_goods_payload,
}
