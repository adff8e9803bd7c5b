"""Gateway auth, rate limiting and fan-out to internal services."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from resilientme.common.config import settings
from resilientme.common.errors import Internal, NotFound, ResourceExhausted
from resilientme.common.ratelimit import RateLimiter
from resilientme.common.schemas import EntryCreate, RecoveryPlanRequest
from resilientme.services.api_gateway import main as gateway_main
from resilientme.services.api_gateway.service import GatewayService

NOW = datetime(2024, 3, 4, 12, tzinfo=timezone.utc)
HEADERS = {"x-api-key": "test-key", "x-owner-id": "owner-1"}


class FakeCalls:
    """Records internal calls and answers from a canned table."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    async def __call__(self, method, url, *, json=None, params=None, timeout=None):
        self.calls.append((method, url, json))
        response = self.responses.get((method, url), {"ok": True})
        if isinstance(response, Exception):
            raise response
        return response


class FakeS3:
    def __init__(self, missing=()):
        self.missing = set(missing)
        self.objects = {}
        self.deleted = []

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = Body

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://s3.example/{Params['Bucket']}/{Params['Key']}?expires={ExpiresIn}"

    def delete_object(self, Bucket, Key):
        if Key in self.missing:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "gone"}}, "DeleteObject")
        self.deleted.append(Key)


def make_entry():
    return EntryCreate(id=str(uuid4()), category="dating", impact=7, note="left on read", timestamp=NOW)


@pytest.fixture
def calls():
    return FakeCalls()


@pytest.fixture
def gateway(rdb, calls):
    return GatewayService(RateLimiter(rdb), s3=FakeS3(), call=calls)


async def test_entry_is_forwarded_as_idempotent_put(gateway, calls):
    """Entries reach the ledger as a PUT keyed by the client id."""

    entry = make_entry()

    await gateway.create_entry("owner-1", entry)

    method, url, body = calls.calls[0]
    assert method == "PUT"
    assert url == f"{settings.ledger_url}/internal/owners/owner-1/entries/{entry.id}"
    assert body["id"] == str(entry.id)


async def test_rate_limit_rejects_before_forwarding(gateway, calls):
    """Over-limit calls never reach the ledger."""

    for _ in range(5):
        await gateway.create_entry("owner-1", make_entry())

    with pytest.raises(ResourceExhausted):
        await gateway.create_entry("owner-1", make_entry())
    assert len(calls.calls) == 5


async def test_downstream_not_found_is_relayed(rdb):
    """A downstream 404 surfaces as NotFound."""

    url = f"{settings.community_url}/internal/owners/owner-1/posts/missing/reports"
    gateway = GatewayService(RateLimiter(rdb), s3=FakeS3(), call=FakeCalls({("POST", url): NotFound("Post not found")}))

    with pytest.raises(NotFound):
        await gateway.report("owner-1", "missing")


async def test_export_bundles_entries_and_challenges(rdb):
    """Exports land in S3 and come back as a presigned URL."""

    entries_url = f"{settings.ledger_url}/internal/owners/owner-1/entries"
    challenges_url = f"{settings.aggregator_url}/internal/owners/owner-1/challenges"
    s3 = FakeS3()
    gateway = GatewayService(
        RateLimiter(rdb),
        s3=s3,
        call=FakeCalls({("GET", entries_url): [{"id": "e1"}], ("GET", challenges_url): [{"day": "2024-03-04"}]}),
    )

    result = await gateway.request_export("owner-1", now=NOW)

    key = f"exports/owner-1/{int(NOW.timestamp() * 1000)}.json"
    assert result["key"] == key
    assert result["url"].endswith(f"{key}?expires=3600")
    body = s3.objects[(settings.export_bucket, key)].decode("utf-8")
    assert '"e1"' in body and '"2024-03-04"' in body


async def test_account_deletion_order(rdb):
    """Images go first and the owner record goes last."""

    entries_url = f"{settings.ledger_url}/internal/owners/owner-1/entries"
    calls = FakeCalls({("GET", entries_url): [{"id": "e1"}, {"id": "e2"}]})
    s3 = FakeS3(missing={"rejection_images/owner-1/e2.jpg"})
    gateway = GatewayService(RateLimiter(rdb), s3=s3, call=calls)

    result = await gateway.delete_account("owner-1")

    assert result == {"ok": True, "entries_deleted": 2}
    assert s3.deleted == ["rejection_images/owner-1/e1.jpg"]
    assert [(m, u) for m, u, _ in calls.calls[1:]] == [
        ("DELETE", f"{settings.aggregator_url}/internal/owners/owner-1"),
        ("DELETE", f"{settings.notification_url}/internal/owners/owner-1"),
        ("DELETE", f"{settings.community_url}/internal/owners/owner-1"),
        ("DELETE", f"{settings.ledger_url}/internal/owners/owner-1/entries"),
        ("DELETE", f"{settings.ledger_url}/internal/owners/owner-1"),
    ]


async def test_account_deletion_only_trusts_image_paths_under_owner_prefix(rdb):
    """Stored image paths outside the owner's prefix are replaced by the default key."""

    entries_url = f"{settings.ledger_url}/internal/owners/owner-1/entries"
    entries = [
        {"id": "e1", "image_path": "rejection_images/owner-1/custom.png"},
        {"id": "e2", "image_path": "rejection_images/owner-2/e2.jpg"},
    ]
    s3 = FakeS3()
    gateway = GatewayService(RateLimiter(rdb), s3=s3, call=FakeCalls({("GET", entries_url): entries}))

    await gateway.delete_account("owner-1")

    assert s3.deleted == ["rejection_images/owner-1/custom.png", "rejection_images/owner-1/e2.jpg"]


async def test_malformed_recovery_plan_is_internal(rdb):
    """A generator answer missing fields is Internal."""

    calls = FakeCalls({("POST", settings.text_generator_url): {"steps": "nope"}})
    gateway = GatewayService(RateLimiter(rdb), s3=FakeS3(), call=calls)

    with pytest.raises(Internal):
        await gateway.recovery_plan("owner-1", RecoveryPlanRequest(category="job", impact=6))


async def test_recovery_plan_passes_through(rdb):
    """A well-formed plan is returned as is."""

    plan = {
        "steps": [{"title": "Breathe", "detail": "Take five slow breaths"}],
        "affirmations": ["You are enough"],
        "templates": [{"label": "Follow-up", "text": "Thanks for your time"}],
    }
    gateway = GatewayService(
        RateLimiter(rdb), s3=FakeS3(), call=FakeCalls({("POST", settings.text_generator_url): plan})
    )

    result = await gateway.recovery_plan("owner-1", RecoveryPlanRequest(category="job", impact=6))

    assert result.steps[0].title == "Breathe"


def test_routes_require_api_key_and_owner(gateway, monkeypatch):
    """Missing credentials are rejected with 401."""

    monkeypatch.setattr(gateway_main, "gateway", gateway)
    client = TestClient(gateway_main.app)

    missing_owner = client.post("/exports", headers={"x-api-key": "test-key"})
    wrong_key = client.post("/exports", headers={**HEADERS, "x-api-key": "nope"})

    assert missing_owner.status_code == 401
    assert wrong_key.json()["code"] == "unauthenticated"


def test_admin_route_requires_admin_key(gateway, monkeypatch):
    """Admin routes need the admin key on top of normal auth."""

    monkeypatch.setattr(gateway_main, "gateway", gateway)
    client = TestClient(gateway_main.app)

    denied = client.post("/admin/community/backfill-status", headers=HEADERS)
    allowed = client.post("/admin/community/backfill-status", headers={**HEADERS, "x-admin-key": "admin-key"})

    assert denied.status_code == 403
    assert allowed.status_code == 200


def test_invalid_entry_body_is_400(gateway, calls, monkeypatch):
    """A malformed body is rejected before the limiter is touched."""

    monkeypatch.setattr(gateway_main, "gateway", gateway)
    client = TestClient(gateway_main.app)
    body = make_entry().model_dump(mode="json")
    body["category"] = "sports"

    resp = client.post("/entries", json=body, headers=HEADERS)

    assert resp.status_code == 400
    assert calls.calls == []
