from urllib.parse import parse_qs, urlparse

import pytest

from commissionlink.ingest.backend import BackendError
from commissionlink.jobs.smart_links import SmartLinkService

from conftest import ORDER_TIME


@pytest.fixture()
def links(backend, settings):
    return SmartLinkService(backend, settings=settings, clock=lambda: ORDER_TIME)


@pytest.mark.asyncio
async def test_generate_smart_link(links, backend):
    result = await links.generate_smart_link("demo", "42", "aff-9", utm={"source": "tiktok"})

    assert result["success"]
    link = result["smartLink"]
    assert link["trackId"] == "trk-1"
    assert link["url"].startswith("https://app.test/track/trk-1?")
    assert backend.links["trk-1"]["affiliateId"] == "aff-9"


@pytest.mark.asyncio
async def test_click_records_and_redirects_to_product(links, backend):
    backend.links["trk-1"] = {"shopId": "demo", "productId": "42", "affiliateId": "aff-9"}
    headers = {"user-agent": "Mozilla", "x-forwarded-for": "1.2.3.4", "referer": "https://ig.com"}

    outcome = await links.handle_click("trk-1", headers=headers)

    parsed = urlparse(outcome.redirect_url)
    assert parsed.netloc == "demo.myshopify.com"
    assert parsed.path == "/products/42"
    assert parse_qs(parsed.query) == {"ref_track": ["trk-1"], "ref_affiliate": ["aff-9"], "ref_product": ["42"]}
    click = backend.clicks[0]
    assert click["ip_address"] == "1.2.3.4"
    assert click["influencer_id"] == "aff-9"
    assert click["clicked_at"] == "2024-03-01T12:00:00Z"
    assert click["expires_at"] == "2024-03-02T12:00:00Z"
    assert click["device_info"]["userAgent"] == "Mozilla"


@pytest.mark.asyncio
async def test_store_wide_link_goes_to_home_page(links, backend):
    backend.links["trk-2"] = {"shopId": "demo", "productId": None, "affiliateId": "aff-9"}

    outcome = await links.handle_click("trk-2", headers={})

    assert outcome.redirect_url == "https://demo.myshopify.com"
    assert outcome.click.product_id is None


@pytest.mark.asyncio
async def test_unknown_link_falls_back_to_shop(links, backend):
    outcome = await links.handle_click("missing", headers={}, shop_hint="demo")

    assert outcome.redirect_url == "https://demo.myshopify.com"
    assert outcome.click is None
    assert backend.clicks == []


@pytest.mark.asyncio
async def test_click_recording_failure_still_redirects(links, backend, monkeypatch):
    backend.links["trk-1"] = {"shopId": "demo", "productId": "42", "affiliateId": "aff-9"}

    async def broken(click):
        raise BackendError("down", status_code=500)

    monkeypatch.setattr(backend, "track_click", broken)

    outcome = await links.handle_click("trk-1", headers={}, redirect_to="https://demo.myshopify.com/products/hat")

    assert outcome.redirect_url.startswith("https://demo.myshopify.com/products/hat?ref_track=trk-1")


@pytest.mark.asyncio
async def test_off_shop_redirect_is_ignored(links, backend):
    backend.links["trk-1"] = {"shopId": "demo", "productId": "42", "affiliateId": "aff-9"}

    outcome = await links.handle_click("trk-1", headers={}, redirect_to="https://evil.example/phish")

    parsed = urlparse(outcome.redirect_url)
    assert parsed.netloc == "demo.myshopify.com"
    assert parsed.path == "/products/42"


@pytest.mark.asyncio
async def test_redirect_to_lookalike_host_is_ignored(links, backend):
    backend.links["trk-2"] = {"shopId": "demo", "productId": None, "affiliateId": "aff-9"}

    outcome = await links.handle_click(
        "trk-2", headers={}, redirect_to="https://demo.myshopify.com.evil.example/products/hat"
    )

    assert outcome.redirect_url == "https://demo.myshopify.com"


@pytest.mark.asyncio
async def test_smart_link_performance(links, backend):
    backend.links["trk-1"] = {"shopId": "demo", "productId": "42", "affiliateId": "aff-9"}
    await links.handle_click("trk-1", headers={})

    result = await links.get_smart_link_performance("trk-1", start_date="2024-03-01")

    assert result["success"]
    assert result["data"]["linkId"] == "trk-1"
    assert result["data"]["totalClicks"] == 1
    assert result["data"]["uniqueClicks"] is None
    assert "internalScore" not in result["data"]
    assert backend.performance_queries == [("trk-1", "2024-03-01", None)]


@pytest.mark.asyncio
async def test_affiliate_smart_links(links, backend):
    await links.generate_smart_link("demo", "42", "aff-9")
    await links.generate_smart_link("demo", "43", "aff-1")

    result = await links.get_affiliate_smart_links("aff-9")

    assert [link["trackId"] for link in result["data"]] == ["trk-1"]
    assert result["data"][0]["productId"] == "42"
    assert "secret" not in result["data"][0]


@pytest.mark.asyncio
async def test_update_and_delete_smart_link(links, backend):
    await links.generate_smart_link("demo", "42", "aff-9")

    assert (await links.update_smart_link_status("trk-1", "inactive"))["success"]
    assert backend.links["trk-1"]["isActive"] is False
    with pytest.raises(ValueError):
        await links.update_smart_link_status("trk-1", "paused")

    assert (await links.delete_smart_link("trk-1"))["success"]
    assert (await links.delete_smart_link("trk-1")) == {"success": False, "error": "Not found"}
    assert "trk-1" not in backend.links
