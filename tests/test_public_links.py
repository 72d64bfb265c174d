from datetime import datetime, timedelta

import pytest

from forumfiles.core.errors import Gone, NotFound
from forumfiles.models.file import File
from forumfiles.models.public_link import PublicLink
from forumfiles.services.link_redemption import LinkRedemptionEngine

from conftest import PNG_BYTES, auth_headers, upload


async def _issue(client, admin, file_id, expires_in=24, max_downloads=None):
    payload = {"fileId": file_id, "expiresIn": expires_in}
    if max_downloads is not None:
        payload["maxDownloads"] = max_downloads
    resp = await client.post("/admin/generate-link", json=payload, headers=auth_headers(admin))
    assert resp.status_code == 200, resp.text
    return resp.json()


async def _redeem(client, code, password):
    return await client.post(f"/public/link/{code}/download", json={"password": password})


@pytest.fixture
async def uploaded(client, user):
    resp = await upload(client, auth_headers(user), PNG_BYTES, filename="map.png", description="Trail map")
    return resp.json()["file"]


async def test_generate_link_response(client, admin, uploaded):
    body = await _issue(client, admin, uploaded["id"])
    assert len(body["linkCode"]) == 32
    assert body["password"].isdigit() and len(body["password"]) == 4
    assert body["link"].endswith(f"/public/{body['linkCode']}")
    expires_at = datetime.fromisoformat(body["expiresAt"])
    assert timedelta(hours=23, minutes=59) < expires_at - datetime.utcnow() <= timedelta(hours=24)


async def test_twenty_four_hours_two_downloads(client, db, admin, uploaded):
    body = await _issue(client, admin, uploaded["id"], expires_in=24, max_downloads=2)
    code, password = body["linkCode"], body["password"]

    info = await client.get(f"/public/link/{code}")
    assert info.status_code == 200
    assert info.json()["filename"] == "map.png"
    assert info.json()["requiresPassword"] is True
    assert info.json()["downloadCount"] == 0
    assert info.json()["maxDownloads"] == 2

    for expected_count in (1, 2):
        resp = await _redeem(client, code, password)
        assert resp.status_code == 200
        assert resp.content == PNG_BYTES
        assert "attachment;" in resp.headers["content-disposition"]
        assert "filename*=UTF-8''map.png" in resp.headers["content-disposition"]
        link = await db.get(PublicLink, (await _link_id(db, code)), populate_existing=True)
        assert link.download_count == expected_count

    third = await _redeem(client, code, password)
    assert third.status_code == 410
    assert third.json()["reason"] == "exhausted"
    assert "filename" not in third.json()

    # the landing page can still say what the link was
    info = await client.get(f"/public/link/{code}")
    assert info.status_code == 410
    assert info.json()["reason"] == "exhausted"
    assert info.json()["filename"] == "map.png"
    assert info.json()["fileSize"] == len(PNG_BYTES)
    assert info.json()["downloadCount"] == 2
    assert info.json()["maxDownloads"] == 2

    record = await db.get(File, uploaded["id"], populate_existing=True)
    assert record.download_count == 2


async def _link_id(db, code):
    from sqlalchemy import select

    return (await db.execute(select(PublicLink.id).where(PublicLink.code == code))).scalar_one()


async def test_expired_link_is_gone(client, db, admin, uploaded):
    body = await _issue(client, admin, uploaded["id"], expires_in=24)
    engine = LinkRedemptionEngine(db, None)
    later = datetime.utcnow() + timedelta(hours=24, seconds=1)

    with pytest.raises(Gone) as exc:
        await engine.resolve(body["linkCode"], now=later)
    assert exc.value.reason == "expired"
    assert exc.value.info.file.filename == "map.png"

    with pytest.raises(Gone):
        await engine.redeem(body["linkCode"], body["password"], now=later)


async def test_expired_link_over_http(client, db, admin, uploaded):
    body = await _issue(client, admin, uploaded["id"], expires_in=24)
    link = await db.get(PublicLink, await _link_id(db, body["linkCode"]))
    link.expires_at = datetime.utcnow() - timedelta(seconds=1)
    await db.commit()

    info = await client.get(f"/public/link/{body['linkCode']}")
    assert info.status_code == 410
    assert info.json()["reason"] == "expired"
    assert info.json()["filename"] == "map.png"
    assert info.json()["mimeType"] == "image/png"
    assert info.json()["expiresAt"] is not None
    assert (await _redeem(client, body["linkCode"], body["password"])).status_code == 410


async def test_link_without_expiry(client, admin, uploaded):
    body = await _issue(client, admin, uploaded["id"], expires_in=None)
    assert body["expiresAt"] is None
    assert (await _redeem(client, body["linkCode"], body["password"])).status_code == 200


async def test_invalid_expiry_is_rejected(client, admin, uploaded):
    resp = await client.post(
        "/admin/generate-link",
        json={"fileId": uploaded["id"], "expiresIn": 12},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 400


@pytest.mark.parametrize("max_downloads", [0, -3])
async def test_non_positive_cap_is_rejected(client, admin, uploaded, max_downloads):
    resp = await client.post(
        "/admin/generate-link",
        json={"fileId": uploaded["id"], "expiresIn": 24, "maxDownloads": max_downloads},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 400


async def test_non_admin_cannot_issue(client, user, uploaded):
    resp = await client.post(
        "/admin/generate-link",
        json={"fileId": uploaded["id"], "expiresIn": 24},
        headers=auth_headers(user),
    )
    assert resp.status_code == 403


async def test_deactivated_and_unknown_codes_look_the_same(client, admin, uploaded):
    body = await _issue(client, admin, uploaded["id"])
    resp = await client.post(f"/admin/links/{body['linkCode']}/deactivate", headers=auth_headers(admin))
    assert resp.status_code == 200

    deactivated = await client.get(f"/public/link/{body['linkCode']}")
    unknown = await client.get("/public/link/" + "0" * 32)
    assert deactivated.status_code == unknown.status_code == 404
    assert deactivated.json() == unknown.json()

    redeem_deactivated = await _redeem(client, body["linkCode"], body["password"])
    redeem_unknown = await _redeem(client, "0" * 32, body["password"])
    assert redeem_deactivated.status_code == redeem_unknown.status_code == 404
    assert redeem_deactivated.json() == redeem_unknown.json()


async def test_wrong_password_changes_nothing(client, db, admin, uploaded):
    body = await _issue(client, admin, uploaded["id"], max_downloads=1)
    wrong = "0000" if body["password"] != "0000" else "1111"

    resp = await _redeem(client, body["linkCode"], wrong)
    assert resp.status_code == 401
    assert resp.json()["kind"] == "invalid_password"

    link = await db.get(PublicLink, await _link_id(db, body["linkCode"]), populate_existing=True)
    assert link.download_count == 0
    record = await db.get(File, uploaded["id"], populate_existing=True)
    assert record.download_count == 0

    assert (await _redeem(client, body["linkCode"], body["password"])).status_code == 200


async def test_failed_passwords_are_rate_limited(client, admin, uploaded, rate_limits_on, monkeypatch):
    from forumfiles.core.config import settings

    monkeypatch.setattr(settings, "REDEMPTION_RATE_LIMIT", "3/15minute")
    body = await _issue(client, admin, uploaded["id"])
    wrong = "0000" if body["password"] != "0000" else "1111"

    for _ in range(3):
        assert (await _redeem(client, body["linkCode"], wrong)).status_code == 401
    blocked = await _redeem(client, body["linkCode"], body["password"])
    assert blocked.status_code == 429


async def test_forwarded_for_does_not_reset_the_limit(client, admin, uploaded, rate_limits_on, monkeypatch):
    from forumfiles.core.config import settings

    monkeypatch.setattr(settings, "REDEMPTION_RATE_LIMIT", "3/15minute")
    body = await _issue(client, admin, uploaded["id"])
    wrong = "0000" if body["password"] != "0000" else "1111"

    for i in range(3):
        resp = await client.post(
            f"/public/link/{body['linkCode']}/download",
            json={"password": wrong},
            headers={"X-Forwarded-For": f"10.0.0.{i}"},
        )
        assert resp.status_code == 401
    blocked = await client.post(
        f"/public/link/{body['linkCode']}/download",
        json={"password": body["password"]},
        headers={"X-Forwarded-For": "10.0.0.99"},
    )
    assert blocked.status_code == 429


async def test_failed_passwords_are_limited_per_link(client, admin, uploaded, rate_limits_on, monkeypatch):
    from forumfiles.core.config import settings

    monkeypatch.setattr(settings, "TRUSTED_PROXIES", ["127.0.0.1"])
    monkeypatch.setattr(settings, "REDEMPTION_RATE_LIMIT", "100/15minute")
    monkeypatch.setattr(settings, "REDEMPTION_CODE_RATE_LIMIT", "3/15minute")
    body = await _issue(client, admin, uploaded["id"])
    other = await _issue(client, admin, uploaded["id"])
    wrong = "0000" if body["password"] != "0000" else "1111"

    # a different client address each time, as seen through a trusted proxy
    for i in range(3):
        resp = await client.post(
            f"/public/link/{body['linkCode']}/download",
            json={"password": wrong},
            headers={"X-Forwarded-For": f"10.0.0.{i}"},
        )
        assert resp.status_code == 401
    blocked = await client.post(
        f"/public/link/{body['linkCode']}/download",
        json={"password": body["password"]},
        headers={"X-Forwarded-For": "10.0.0.99"},
    )
    assert blocked.status_code == 429

    # other links are unaffected
    assert (await _redeem(client, other["linkCode"], other["password"])).status_code == 200


async def test_soft_deleted_file_breaks_its_links(client, admin, user, uploaded):
    body = await _issue(client, admin, uploaded["id"])
    resp = await client.delete(f"/files/{uploaded['id']}", headers=auth_headers(user))
    assert resp.status_code == 200

    assert (await client.get(f"/public/link/{body['linkCode']}")).status_code == 404
    assert (await _redeem(client, body["linkCode"], body["password"])).status_code == 404


async def test_missing_object_is_not_found_and_not_counted(client, db, storage, admin, uploaded):
    body = await _issue(client, admin, uploaded["id"])
    record = await db.get(File, uploaded["id"])
    storage.remove(record.object_name)

    with pytest.raises(NotFound):
        await LinkRedemptionEngine(db, storage).redeem(body["linkCode"], body["password"])
    link = await db.get(PublicLink, await _link_id(db, body["linkCode"]), populate_existing=True)
    assert link.download_count == 0


async def test_stream_failure_after_commit_is_counted(client, db, storage, admin, uploaded, monkeypatch):
    body = await _issue(client, admin, uploaded["id"])

    def vanished(object_name):
        from forumfiles.core.storage import ObjectNotFound

        raise ObjectNotFound(object_name)

    monkeypatch.setattr(storage, "open", vanished)
    with pytest.raises(NotFound):
        await LinkRedemptionEngine(db, storage).redeem(body["linkCode"], body["password"])

    link = await db.get(PublicLink, await _link_id(db, body["linkCode"]), populate_existing=True)
    assert link.download_count == 1


async def test_admin_lists_links_without_passwords(client, admin, uploaded):
    first = await _issue(client, admin, uploaded["id"])
    await _issue(client, admin, uploaded["id"], max_downloads=1)
    await client.post(f"/admin/links/{first['linkCode']}/deactivate", headers=auth_headers(admin))

    resp = await client.get(f"/admin/files/{uploaded['id']}/links", headers=auth_headers(admin))
    assert resp.status_code == 200
    links = resp.json()["links"]
    assert len(links) == 2
    assert all("password" not in link for link in links)
    statuses = {link["linkCode"]: link["status"] for link in links}
    assert statuses[first["linkCode"]] == "deactivated"


def test_client_ip_trusts_forwarded_for_only_from_known_proxies(monkeypatch):
    from starlette.requests import Request

    from forumfiles.core.config import settings
    from forumfiles.core.rate_limit import client_ip

    request = Request({
        "type": "http",
        "headers": [(b"x-forwarded-for", b"203.0.113.5, 10.0.0.1")],
        "client": ("127.0.0.1", 5000),
    })
    assert client_ip(request) == "127.0.0.1"

    monkeypatch.setattr(settings, "TRUSTED_PROXIES", ["127.0.0.1"])
    assert client_ip(request) == "203.0.113.5"
