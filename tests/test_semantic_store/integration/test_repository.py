"""Integration tests for SemanticModelRepository over the local disk strategy."""

from types import SimpleNamespace

import pytest

from conftest import make_table
import semantic_store.repository as repository_module
from semantic_store.config import MonitoringConfig, RepositoryConfig, SemanticStoreConfig
from semantic_store.exceptions import NotFoundError
from semantic_store.performance import PerformanceMonitor
from semantic_store.persistence import PersistenceStrategyFactory
from semantic_store.repository import SemanticModelRepository


@pytest.fixture
def factory(tmp_path) -> PersistenceStrategyFactory:
    return PersistenceStrategyFactory(SemanticStoreConfig(local_disk={"directory": str(tmp_path)}))


@pytest.fixture
def monitor() -> PerformanceMonitor:
    return PerformanceMonitor()


def repository(factory, monitor=None, **options) -> SemanticModelRepository:
    return SemanticModelRepository(factory, monitor, RepositoryConfig(**options))


class TestRepositoryOperations:
    """Tests for the repository facade."""

    @pytest.mark.asyncio
    async def test_save_load_round_trip(self, factory, monitor, sample_model):
        """Every facade call goes through the monitor."""
        repo = repository(factory, monitor)

        await repo.save_model(sample_model)
        loaded = await repo.load_model("AdventureWorks")

        assert loaded.entity_count() == 4
        assert await repo.exists("AdventureWorks")
        assert await repo.list_models() == ["AdventureWorks"]
        for operation in ("SaveModel", "LoadModel", "Exists", "ListModels"):
            assert monitor.get_statistics(operation).success_count == 1

    @pytest.mark.asyncio
    async def test_failed_load_is_tracked(self, factory, monitor):
        """A failing load is recorded as a failure and still raises."""
        repo = repository(factory, monitor)

        with pytest.raises(NotFoundError):
            await repo.load_model("Missing")

        assert monitor.get_statistics("LoadModel").failure_count == 1

    @pytest.mark.asyncio
    async def test_disabled_monitoring_records_nothing(self, factory, sample_model):
        """Disabled monitoring leaves the metrics empty."""
        monitor = PerformanceMonitor(MonitoringConfig(enabled=False))
        repo = repository(factory, monitor)

        await repo.save_model(sample_model)

        assert monitor.get_metrics().total_operations == 0

    @pytest.mark.asyncio
    async def test_lazy_default_from_options(self, factory, sample_model):
        """enable_lazy_loading applies when load_model gets no flag."""
        await repository(factory).save_model(sample_model)

        loaded = await repository(factory, enable_lazy_loading=True).load_model("AdventureWorks")

        assert loaded.is_lazy_loading_enabled()
        assert loaded.tables.pending_count == 2

    @pytest.mark.asyncio
    async def test_delete(self, factory, monitor, sample_model):
        """Deleting a model also drops it from the cache."""
        repo = repository(factory, monitor, enable_caching=True)
        await repo.save_model(sample_model)

        assert await repo.delete_model("AdventureWorks") is True

        with pytest.raises(NotFoundError):
            await repo.load_model("AdventureWorks")
        assert monitor.get_statistics("DeleteModel").count == 1


class TestCaching:
    """Tests for the in-memory model cache."""

    @pytest.mark.asyncio
    async def test_cached_instance_returned(self, factory, sample_model):
        """A cached model is returned as the same instance."""
        repo = repository(factory, enable_caching=True)
        await repository(factory).save_model(sample_model)

        first = await repo.load_model("AdventureWorks")
        second = await repo.load_model("AdventureWorks")

        assert first is second

    @pytest.mark.asyncio
    async def test_no_cache_by_default(self, factory, sample_model):
        """Without caching every load builds a new model."""
        repo = repository(factory)
        await repo.save_model(sample_model)

        assert await repo.load_model("AdventureWorks") is not await repo.load_model("AdventureWorks")

    @pytest.mark.asyncio
    async def test_expired_entry_reloaded(self, factory, sample_model, monkeypatch):
        """Entries older than cache_expiration_seconds are reloaded."""
        repo = repository(factory, enable_caching=True, cache_expiration_seconds=10)
        await repository(factory).save_model(sample_model)
        clock = [100.0]
        monkeypatch.setattr(repository_module, "time", SimpleNamespace(monotonic=lambda: clock[0]))

        first = await repo.load_model("AdventureWorks")
        clock[0] += 11

        assert await repo.load_model("AdventureWorks") is not first

    @pytest.mark.asyncio
    async def test_closed_model_evicted(self, factory, sample_model):
        """A closed model is never handed out from the cache."""
        repo = repository(factory, enable_caching=True)
        await repository(factory).save_model(sample_model)

        first = await repo.load_model("AdventureWorks")
        first.close()

        assert await repo.load_model("AdventureWorks") is not first


class TestSaveChanges:
    """Tests for change-tracked selective saves."""

    @pytest.mark.asyncio
    async def test_only_dirty_entities_written(self, factory, tmp_path, sample_model):
        """Only the modified entity file is rewritten."""
        repo = repository(factory)
        await repo.save_model(sample_model)
        customer_file = tmp_path / "AdventureWorks" / "tables" / "sales.Customer.json"
        before = customer_file.stat().st_mtime_ns

        model = await repo.load_model("AdventureWorks", change_tracking=True)
        (await model.find_table("dbo", "Product")).set_semantic_description("Things we sell")
        written = await repo.save_changes(model)

        assert written == 1
        assert customer_file.stat().st_mtime_ns == before
        assert model.has_unsaved_changes() is False
        reloaded = await repo.load_model("AdventureWorks")
        assert (await reloaded.find_table("dbo", "Product")).semantic_description == "Things we sell"

    @pytest.mark.asyncio
    async def test_additions_and_removals(self, factory, tmp_path, sample_model):
        """Added entities are written and removed ones deleted."""
        repo = repository(factory)
        await repo.save_model(sample_model)

        model = await repo.load_model("AdventureWorks", lazy=True, change_tracking=True)
        model.add_table(make_table("dbo", "NewTable"))
        model.remove_view("sales", "vOrders")
        written = await repo.save_changes(model)

        assert written == 1
        assert not (tmp_path / "AdventureWorks" / "views" / "sales.vOrders.json").exists()
        reloaded = await repo.load_model("AdventureWorks")
        assert sorted(e.identity_key for e in reloaded.all_entities()) == [
            "dbo.NewTable",
            "dbo.Product",
            "dbo.uspGetOrders",
            "sales.Customer",
        ]

    @pytest.mark.asyncio
    async def test_nothing_to_save(self, factory, monitor, sample_model):
        """A clean model writes nothing and records no operation."""
        repo = repository(factory, monitor)
        await repo.save_model(sample_model)
        model = await repo.load_model("AdventureWorks", change_tracking=True)

        assert await repo.save_changes(model) == 0
        assert monitor.get_statistics("SaveChanges") is None

    @pytest.mark.asyncio
    async def test_untracked_model_saves_everything(self, factory, sample_model):
        """Without change tracking save_changes is a full save."""
        repo = repository(factory)

        assert await repo.save_changes(sample_model) == 4
