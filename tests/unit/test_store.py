"""
Tests for the site store.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from sitewatch.engine import Failed, Site, Success
from sitewatch.store import SiteStore, get_site_store


@pytest.fixture
def site_store(tmp_path) -> SiteStore:
    return SiteStore(persist_path=tmp_path / "sites.json")


class TestSiteStore:
    """Tests for SiteStore."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, site_store: SiteStore, make_site) -> None:
        site = make_site()
        await site_store.save_site(site)

        assert await site_store.get_site(site.id) == site
        assert await site_store.get_site("missing") is None

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path, make_site) -> None:
        path = tmp_path / "sites.json"
        site = make_site(tags=["prod"])
        first = SiteStore(persist_path=path)
        await first.save_site(site)
        await first.record_result(site.id, Failed(reason="status 500"), datetime.now(timezone.utc))

        second = SiteStore(persist_path=path)
        loaded = await second.get_site(site.id)

        assert loaded.url == site.url
        assert loaded.tags == ["prod"]
        assert isinstance(loaded.last_result.outcome, Failed)
        assert len(await second.get_results(site.id)) == 1
        assert "sites" in json.loads(path.read_text())

    @pytest.mark.asyncio
    async def test_corrupt_file_is_ignored(self, tmp_path) -> None:
        path = tmp_path / "sites.json"
        path.write_text("{not json")

        store = SiteStore(persist_path=path)

        assert await store.list_sites() == []

    @pytest.mark.asyncio
    async def test_find_site_by_prefix(self, site_store: SiteStore) -> None:
        a = Site(id="abc123", url="https://a.example")
        b = Site(id="abd456", url="https://b.example")
        await site_store.save_site(a)
        await site_store.save_site(b)

        assert await site_store.find_site("abc") == a
        assert await site_store.find_site("abd456") == b
        assert await site_store.find_site("ab") is None  # Ambiguous

    @pytest.mark.asyncio
    async def test_list_filters(self, site_store: SiteStore, make_site) -> None:
        prod = make_site(name="prod", tags=["Production"])
        staging = make_site(name="staging", tags=["staging"])
        off = make_site(name="off", tags=["production"], disabled=True)
        for site in (prod, staging, off):
            await site_store.save_site(site)

        assert [s.name for s in await site_store.list_sites()] == ["prod", "staging", "off"]
        assert [s.name for s in await site_store.list_sites(tags=["production"])] == ["prod", "off"]
        assert [s.name for s in await site_store.list_active_sites()] == ["prod", "staging"]

    @pytest.mark.asyncio
    async def test_set_disabled(self, site_store: SiteStore, make_site) -> None:
        site = make_site()
        await site_store.save_site(site)

        updated = await site_store.set_disabled(site.id, True)

        assert updated.disabled is True
        assert await site_store.list_active_sites() == []
        assert await site_store.set_disabled("missing", True) is None

    @pytest.mark.asyncio
    async def test_delete_site(self, site_store: SiteStore, make_site) -> None:
        site = make_site()
        await site_store.save_site(site)
        await site_store.record_result(site.id, Success(), datetime.now(timezone.utc))

        assert await site_store.delete_site(site.id) is True
        assert await site_store.delete_site(site.id) is False
        assert await site_store.get_results(site.id) == []

    @pytest.mark.asyncio
    async def test_record_result_updates_last_result(self, site_store: SiteStore, make_site) -> None:
        site = make_site()
        await site_store.save_site(site)
        earlier = datetime.now(timezone.utc) - timedelta(minutes=10)
        later = datetime.now(timezone.utc)

        await site_store.record_result(site.id, Failed(reason="status 500"), earlier)
        await site_store.record_result(site.id, Success(), later)

        stored = await site_store.get_site(site.id)
        assert stored.last_result.timestamp == later
        results = await site_store.get_results(site.id)
        assert [r.ok for r in results] == [True, False]  # Newest first

    @pytest.mark.asyncio
    async def test_result_for_unknown_site_is_dropped(self, site_store: SiteStore) -> None:
        await site_store.record_result("gone", Success(), datetime.now(timezone.utc))
        assert await site_store.get_results("gone") == []

    @pytest.mark.asyncio
    async def test_cleanup_old_results(self, tmp_path, make_site) -> None:
        store = SiteStore(persist_path=tmp_path / "sites.json", result_retention_days=1)
        site = make_site()
        await store.save_site(site)
        await store.record_result(site.id, Success(), datetime.now(timezone.utc))
        store._results[site.id].insert(
            0,
            store._results[site.id][0].model_copy(
                update={"timestamp": datetime.now(timezone.utc) - timedelta(days=3)}
            ),
        )
        store._save_to_file()

        removed = await store.cleanup_old_results()

        assert removed == 1
        assert len(await store.get_results(site.id)) == 1

    @pytest.mark.asyncio
    async def test_reload_sees_other_writers(self, tmp_path, make_site) -> None:
        path = tmp_path / "sites.json"
        daemon = SiteStore(persist_path=path)
        cli = SiteStore(persist_path=path)
        site = make_site()

        await cli.save_site(site)
        assert await daemon.get_site(site.id) is None

        await daemon.reload()
        reloaded = await daemon.get_site(site.id)
        assert reloaded.url == site.url

    @pytest.mark.asyncio
    async def test_result_does_not_clobber_added_site(self, tmp_path, make_site) -> None:
        """Test a recorded result keeps a site another process added meanwhile."""
        path = tmp_path / "sites.json"
        daemon = SiteStore(persist_path=path)
        cli = SiteStore(persist_path=path)
        existing = make_site(name="existing")
        added = make_site(name="added", url="https://added.example")

        await daemon.save_site(existing)
        await cli.save_site(added)
        await daemon.record_result(existing.id, Success(), datetime.now(timezone.utc))
        await daemon.reload()

        assert {s.name for s in await daemon.list_sites()} == {"existing", "added"}
        assert (await daemon.get_site(existing.id)).last_result is not None
        assert await SiteStore(persist_path=path).get_site(added.id) is not None

    @pytest.mark.asyncio
    async def test_result_does_not_undo_disable(self, tmp_path, make_site) -> None:
        path = tmp_path / "sites.json"
        daemon = SiteStore(persist_path=path)
        site = make_site()
        await daemon.save_site(site)

        cli = SiteStore(persist_path=path)
        await cli.set_disabled(site.id, True)
        await daemon.record_result(site.id, Success(), datetime.now(timezone.utc))

        stored = await SiteStore(persist_path=path).get_site(site.id)
        assert stored.disabled is True
        assert stored.last_result is not None

    @pytest.mark.asyncio
    async def test_result_for_site_deleted_elsewhere_is_dropped(self, tmp_path, make_site) -> None:
        path = tmp_path / "sites.json"
        daemon = SiteStore(persist_path=path)
        site = make_site()
        await daemon.save_site(site)

        cli = SiteStore(persist_path=path)
        assert await cli.delete_site(site.id) is True
        await daemon.record_result(site.id, Success(), datetime.now(timezone.utc))

        assert await SiteStore(persist_path=path).list_sites() == []
        assert await daemon.get_site(site.id) is None

    @pytest.mark.asyncio
    async def test_memory_only(self, make_site) -> None:
        store = SiteStore()
        site = make_site()
        await store.save_site(site)
        await store.reload()

        assert await store.get_site(site.id) == site


class TestGlobalStore:
    """Tests for the global store."""

    def test_get_site_store_uses_settings(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "data" / "sites.json"
        monkeypatch.setenv("SITEWATCH_DATA_PATH", str(path))

        store = get_site_store()

        assert store is get_site_store()
        assert store._persist_path == path
