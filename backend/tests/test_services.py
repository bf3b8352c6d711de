import json
from datetime import datetime, timedelta
from uuid import uuid4

import httpx
import pytest

from classifieds.categories import get_category
from classifieds.errors import NotificationError, TooManyImages, UploadError, ValidationError
from classifieds.persistence import InMemoryPersistence
from classifieds.query import AnyOf, Between, Eq, IContains, matches, sort_documents
from classifieds.services.images import ImageBatchProcessor
from classifieds.services.listings import build_filter
from classifieds.services.notifications import DailyCounter, notify_new_ad
from classifieds.services.push import EXPO_CHUNK_SIZE, ExpoPushGateway, InMemoryPushGateway, PushMessage, is_expo_push_token
from classifieds.services.quota import can_create, count_today, day_window
from classifieds.services.uploads import InMemoryImageUploader, object_key_from_url, parse_inline_image
from factories import inline_png

SENTINEL = "بدون فیلتر"


# ---- query matching ----


def test_in_memory_filter_conditions() -> None:
    doc = {"title": "Senior Barista", "type": "rent", "createdAt": datetime(2026, 3, 1, 10, 0)}
    assert matches(doc, {"type": "rent"})
    assert not matches(doc, {"type": Eq("Rent")})
    assert matches(doc, {"title": IContains("barista")})
    assert matches(doc, {"title": AnyOf(("cook", "senior"))})
    assert not matches(doc, {"title": AnyOf(("cook", "driver"))})
    assert matches(doc, {"createdAt": Between(datetime(2026, 3, 1), datetime(2026, 3, 2))})
    assert not matches(doc, {"createdAt": Between(datetime(2026, 3, 1, 10, 0, 1), datetime(2026, 3, 2))})
    assert not matches(doc, {"missing": IContains("x")})


def test_sort_puts_missing_values_last() -> None:
    docs = [{"n": 2}, {"n": None}, {"n": 3}, {"n": 1}]
    assert [d["n"] for d in sort_documents(docs, [("n", -1)])] == [3, 2, 1, None]


# ---- listing filters ----


def test_build_filter_skips_sentinel_and_blank_values() -> None:
    spec = get_category("job")
    flt = build_filter(spec, {"title": SENTINEL, "location": "  ", "jobTitle": "chef"}, SENTINEL)
    assert flt == {"jobTitle": IContains("chef")}


def test_build_filter_exact_and_unknown_fields() -> None:
    spec = get_category("property")
    flt = build_filter(spec, {"type": "sale", "owner": "someone", "price": "100"}, SENTINEL)
    assert flt == {"type": Eq("sale")}


def test_build_filter_alternative_params_widen_match() -> None:
    spec = get_category("home-goods")
    flt = build_filter(
        spec,
        {"title1": "table", "title2": SENTINEL, "location1": "Karaj", "location3": "Tehran"},
        SENTINEL,
    )
    assert flt == {"title": IContains("table"), "location": AnyOf(("Karaj", "Tehran"))}


# ---- quota ----


def test_day_window_is_half_open_local_day() -> None:
    start, end = day_window(datetime(2026, 5, 4, 23, 59, 59))
    assert start == datetime(2026, 5, 4)
    assert end == datetime(2026, 5, 5)


def test_count_today_uses_window_boundaries() -> None:
    persistence = InMemoryPersistence()
    owner = uuid4()
    now = datetime(2026, 5, 4, 12, 0)
    for created in (datetime(2026, 5, 4), datetime(2026, 5, 4, 23, 59), datetime(2026, 5, 5), datetime(2026, 5, 3, 23, 59)):
        persistence.insert("jobs", {"title": "x", "owner": owner, "createdAt": created})
    persistence.insert("jobs", {"title": "y", "owner": uuid4(), "createdAt": now})

    assert count_today(persistence, owner, "jobs", now) == 2
    assert can_create(persistence, owner, "jobs", 3, now)
    assert not can_create(persistence, owner, "jobs", 2, now)


# ---- image processor ----


def test_processor_uploads_inline_and_keeps_urls() -> None:
    uploader = InMemoryImageUploader()
    processor = ImageBatchProcessor(uploader, max_bytes=1024)
    kept = "https://cdn.example.com/ads/old.jpg"

    batch = processor.process([kept, "https://cdn.example.com/ads/gone.jpg"], [kept, inline_png()])

    assert batch.images[0] == kept
    assert batch.images[1] in batch.uploaded
    assert batch.removed == ["https://cdn.example.com/ads/gone.jpg"]
    assert object_key_from_url(batch.uploaded[0]) in uploader.objects


def test_processor_rejects_too_many_images() -> None:
    processor = ImageBatchProcessor(InMemoryImageUploader())
    with pytest.raises(TooManyImages) as exc:
        processor.process([], ["x"] * 6)
    assert exc.value.limit == 5


def test_processor_rejects_oversized_payload_before_uploading() -> None:
    uploader = InMemoryImageUploader()
    processor = ImageBatchProcessor(uploader, max_bytes=16)
    with pytest.raises(ValidationError) as exc:
        processor.process([], [inline_png("a"), inline_png("long enough to overflow")])
    assert exc.value.details[0][0] == "images.1"
    assert uploader.objects == {}


def test_processor_rolls_back_when_an_upload_fails() -> None:
    uploader = InMemoryImageUploader()
    real_upload = uploader.upload
    calls = []

    def flaky(image):
        calls.append(image)
        if len(calls) == 3:
            raise RuntimeError("socket closed")
        return real_upload(image)

    uploader.upload = flaky
    processor = ImageBatchProcessor(uploader)

    with pytest.raises(UploadError):
        processor.process([], [inline_png("a"), inline_png("b"), inline_png("c")])
    assert uploader.objects == {}


def test_destroy_failures_are_swallowed() -> None:
    uploader = InMemoryImageUploader()
    processor = ImageBatchProcessor(uploader)
    batch = processor.process([], [inline_png()])

    destroyed = processor.destroy_all(["https://objects.local/ads/missing.png", *batch.uploaded])

    assert destroyed == 1
    assert uploader.objects == {}


def test_parse_inline_image_rejects_bad_base64() -> None:
    with pytest.raises(ValueError):
        parse_inline_image("data:image/png;base64,@@@", 1024)
    image = parse_inline_image("data:image/jpeg;base64,/9j/", 1024)
    assert image.extension == "jpg"
    assert image.content_type == "image/jpeg"


# ---- notification fan-out ----


def test_daily_counter_resets_on_new_day() -> None:
    today = datetime(2026, 5, 4, 9, 0)
    counter = DailyCounter(5, today - timedelta(days=1))
    assert not counter.is_capped(today.date(), 5)
    bumped = counter.incremented(today)
    assert bumped == DailyCounter(1, today)
    assert DailyCounter(5, today).is_capped(today.date(), 5)
    assert DailyCounter(4, today).incremented(today).count == 5


def _user(persistence, token, count=0, last=None):
    return persistence.insert(
        "users",
        {"username": token or "anon", "pushToken": token, "notificationCount": count, "lastNotificationDate": last},
    )


def test_fan_out_skips_author_capped_and_tokenless_users() -> None:
    persistence = InMemoryPersistence()
    gateway = InMemoryPushGateway()
    now = datetime(2026, 5, 4, 12, 0)
    author = _user(persistence, "ExponentPushToken[author]")
    capped = _user(persistence, "ExponentPushToken[capped]", 2, now.replace(hour=8))
    fresh = _user(persistence, "ExponentPushToken[fresh]", 2, now - timedelta(days=1))
    _user(persistence, None)
    _user(persistence, "bogus")

    report = notify_new_ad(persistence, gateway, author["id"], "New vehicle listing", "body", cap=2, now=now)

    assert report.queued == 1
    assert report.skipped_author == 1
    assert report.skipped_capped == 1
    assert report.skipped_no_token == 2
    assert [m.to for m in gateway.sent] == ["ExponentPushToken[fresh]"]
    assert persistence.get("users", fresh["id"])["notificationCount"] == 1
    assert persistence.get("users", capped["id"])["notificationCount"] == 2


def test_fan_out_keeps_counters_when_dispatch_fails() -> None:
    persistence = InMemoryPersistence()

    class FailingGateway(InMemoryPushGateway):
        def send_batch(self, messages):
            raise NotificationError("down")

    user = _user(persistence, "ExponentPushToken[x]")
    report = notify_new_ad(persistence, FailingGateway(), uuid4(), "t", "b", cap=5)

    assert report.error == "down"
    assert persistence.get("users", user["id"])["notificationCount"] == 1


def test_push_token_shapes() -> None:
    assert is_expo_push_token("ExponentPushToken[abc]")
    assert is_expo_push_token("ExpoPushToken[abc]")
    assert is_expo_push_token(str(uuid4()))
    assert not is_expo_push_token("abc")
    assert not is_expo_push_token(None)


def test_expo_gateway_sends_in_chunks() -> None:
    seen: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        batch = json.loads(request.content)
        seen.append(len(batch))
        assert request.headers["Authorization"] == "Bearer secret"
        return httpx.Response(200, json={"data": [{"status": "ok"} for _ in batch]})

    gateway = ExpoPushGateway("https://push.example/send", "secret", transport=httpx.MockTransport(handler))
    messages = [PushMessage(to=f"ExpoPushToken[{i}]", title="t", body="b") for i in range(EXPO_CHUNK_SIZE + 5)]

    tickets = gateway.send_batch(messages)

    assert seen == [EXPO_CHUNK_SIZE, 5]
    assert len(tickets) == EXPO_CHUNK_SIZE + 5


def test_expo_gateway_maps_http_errors() -> None:
    gateway = ExpoPushGateway(
        "https://push.example/send",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    with pytest.raises(NotificationError):
        gateway.send_batch([PushMessage(to="ExpoPushToken[1]", title="t", body="b")])
