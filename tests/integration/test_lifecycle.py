"""
Integration tests for the data layer lifecycle.

Tests cover:
- Startup with nothing to patch
- Upgrades across several versions
- Resuming an interrupted migration
- Authentication failure during startup
- Best-effort shutdown
- Version persistence across restarts
- Storage settings reaching the SQLite backend
- Logging setup
"""

import json
import logging
import os

import pytest

from repocore.compat import (
    InMemoryCompatibilityService,
    JsonFileCompatibilityService,
    VersionPatch,
)
from repocore.config import (
    CompatibilityConfig,
    DataLayerConfig,
    ObservabilityConfig,
    StorageConfig,
)
from repocore.errors import AuthenticationFailedError, PatchFailedError
from repocore.lifecycle import DataLayer, setup_logging
from repocore.repository import RepositoryRegistry


def counting_step(counter, key, fail_times=0):
    """Step that counts invocations and fails the first ``fail_times`` calls."""

    async def step(ctx):
        counter[key] = counter.get(key, 0) + 1
        if counter[key] <= fail_times:
            raise RuntimeError(f"{key} interrupted")
        return True

    return step


def make_layer(compat):
    return DataLayer(DataLayerConfig(), RepositoryRegistry(), compat)


class TestStartup:
    """Tests for DataLayer.start."""

    @pytest.mark.asyncio
    async def test_nothing_to_patch(self, ctx, make_repo, calls):
        """An up-to-date install starts without running patches."""
        compat = InMemoryCompatibilityService(current_version=3, last_used_version=3)
        layer = make_layer(compat)
        layer.register(ctx, make_repo("a", entity_tags=["E"]))

        assert await layer.start(ctx) is True

        assert layer.started
        assert ctx.messages.count("no patches for E") == 1
        assert compat.last_used_version() == 3
        assert calls == [("a", "initialize"), ("a", "register_patches"), ("a", "execute_patches")]

    @pytest.mark.asyncio
    async def test_upgrade_runs_pending_patches(self, ctx, make_repo):
        """Patches above the last used version run in ascending order."""
        counter = {}
        patches = [
            ("E", VersionPatch(5, counting_step(counter, "v5"))),
            ("E", VersionPatch(2, counting_step(counter, "v2"))),
            ("E", VersionPatch(4, counting_step(counter, "v4"))),
        ]
        compat = InMemoryCompatibilityService(current_version=5, last_used_version=2)
        layer = make_layer(compat)
        layer.register(ctx, make_repo("a", entity_tags=["E"], patches=patches))

        assert await layer.start(ctx) is True

        assert counter == {"v4": 1, "v5": 1}
        assert [m for m in ctx.messages if m.startswith("patch version=")] == [
            "patch version=4, from=2, for=E",
            "patch version=5, from=2, for=E",
        ]
        assert compat.last_used_version() == 5
        assert list(compat.patches_for(ctx, "E")) == []

    @pytest.mark.asyncio
    async def test_interrupted_migration_resumes(self, ctx, make_repo):
        """A failed step stops startup; a retry resumes where it stopped."""
        counter = {}
        patch5 = VersionPatch(5, counting_step(counter, "v5.1"), counting_step(counter, "v5.2", 1))
        patches = [("E", VersionPatch(4, counting_step(counter, "v4"))), ("E", patch5)]
        compat = InMemoryCompatibilityService(current_version=5, last_used_version=3)
        layer = make_layer(compat)
        layer.register(ctx, make_repo("a", entity_tags=["E"], patches=patches))

        assert await layer.start(ctx) is False

        assert compat.last_used_version() == 3
        failure = ctx.exceptions[-1]
        assert isinstance(failure, PatchFailedError)
        assert (failure.version, failure.step_index) == (5, 1)

        assert await layer.start(ctx) is True

        assert counter == {"v4": 1, "v5.1": 1, "v5.2": 2}
        assert "Patches for repository=[a] already registered" in ctx.messages
        assert compat.last_used_version() == 5

    @pytest.mark.asyncio
    async def test_rejected_cipher_stops_startup(self, ctx, notes_cls, make_repo, calls, data_dir):
        """The hook fires once and later repositories are never touched."""
        path = os.path.join(data_dir, "notes.db")
        with open(path, "wb") as fh:
            fh.write(b"encrypted with another key " * 256)
        fired = []
        compat = InMemoryCompatibilityService(current_version=1)
        layer = make_layer(compat)
        layer.register(ctx, notes_cls(path, cipher="wrong"))
        layer.register(ctx, make_repo("b"))

        ok = await layer.start(ctx, on_login_failed=lambda: fired.append(True))

        assert ok is False
        assert fired == [True]
        assert calls == []
        assert isinstance(ctx.exceptions[-1], AuthenticationFailedError)
        assert compat.last_used_version() == 0

    @pytest.mark.asyncio
    async def test_failed_start_can_be_retried(self, ctx, make_repo, calls):
        """Once the cause is cleared, start() initializes again."""
        compat = InMemoryCompatibilityService(current_version=2, last_used_version=1)
        layer = make_layer(compat)
        repo = make_repo("a", fail_on=["initialize"])
        layer.register(ctx, repo)

        assert await layer.start(ctx) is False
        assert not layer.started
        assert compat.last_used_version() == 1

        repo.fail_on.clear()

        assert await layer.start(ctx) is True
        assert layer.started
        assert calls.count(("a", "initialize")) == 2
        assert compat.last_used_version() == 2

    @pytest.mark.asyncio
    async def test_double_start_returns_first_result(self, ctx, make_repo, calls):
        compat = InMemoryCompatibilityService(current_version=1)
        layer = make_layer(compat)
        layer.register(ctx, make_repo("a"))

        assert await layer.start(ctx) is True
        assert await layer.start(ctx) is True

        assert calls.count(("a", "initialize")) == 1


class TestShutdown:
    """Tests for DataLayer.stop."""

    @pytest.mark.asyncio
    async def test_stop_closes_everything(self, ctx, make_repo, calls):
        """A throwing close does not prevent the others."""
        layer = make_layer(InMemoryCompatibilityService(current_version=1))
        for name, fail_on in (("a", ()), ("b", ("close",)), ("c", ())):
            layer.register(ctx, make_repo(name, fail_on=fail_on))

        await layer.stop(ctx)

        assert [c for c in calls if c[1] == "close"] == [("a", "close"), ("b", "close"), ("c", "close")]
        assert not layer.started

    @pytest.mark.asyncio
    async def test_stop_after_failed_start(self, ctx, make_repo, calls):
        layer = make_layer(InMemoryCompatibilityService(current_version=1))
        layer.register(ctx, make_repo("a", fail_on=["initialize"]))

        assert await layer.start(ctx) is False
        await layer.stop(ctx)

        assert calls[-1] == ("a", "close")


class TestVersionPersistence:
    """Tests for the last used version across restarts."""

    async def run(self, ctx, config, notes_cls, db_path, make_repo=None):
        layer = DataLayer.from_config(config)
        notes = notes_cls(db_path)
        layer.register(ctx, notes)
        if make_repo is not None:
            layer.register(ctx, make_repo("broken", fail_on=["initialize"]))
        try:
            ok = await layer.start(ctx)
            columns = notes.has_column(ctx, "tags") if ok else None
        finally:
            await layer.stop(ctx)
        return ok, layer.compat, columns

    @pytest.mark.asyncio
    async def test_version_advances_only_after_success(self, ctx, notes_cls, make_repo, data_dir):
        """A failed run leaves the version; the next successful run records it."""
        version_file = os.path.join(data_dir, "version.json")
        db_path = os.path.join(data_dir, "notes.db")
        config = DataLayerConfig(
            compatibility=CompatibilityConfig(current_version=3, version_file=version_file)
        )

        # Startup expects a provisioned database
        provisioner = notes_cls(db_path)
        await provisioner.provision(ctx)
        await provisioner.close()

        ok, compat, _ = await self.run(ctx, config, notes_cls, db_path, make_repo)
        assert ok is False
        assert not os.path.exists(version_file)
        assert compat.last_used_version() == 0

        ok, compat, has_tags = await self.run(ctx, config, notes_cls, db_path)
        assert ok is True
        assert has_tags is True
        with open(version_file, encoding="utf-8") as fh:
            assert json.load(fh) == {"last_used_version": 3}

        ctx.messages.clear()
        ok, compat, _ = await self.run(ctx, config, notes_cls, db_path)
        assert ok is True
        assert not [m for m in ctx.messages if m.startswith("patch version=")]

    def test_file_service_reads_missing_as_zero(self, data_dir):
        compat = JsonFileCompatibilityService(os.path.join(data_dir, "v.json"), current_version=2)
        assert compat.last_used_version() == 0


class TestStorageWiring:
    """Tests for storage settings reaching the SQLite backend."""

    def test_settings_reach_descriptor_and_probes(self, data_dir):
        """Driver, timeout and WAL mode flow from StorageConfig."""
        storage = StorageConfig(
            data_dir=data_dir, driver="sqlcipher3", busy_timeout_ms=250, wal_mode=False
        )
        layer = DataLayer(
            DataLayerConfig(storage=storage),
            RepositoryRegistry(),
            InMemoryCompatibilityService(current_version=1),
        )

        descriptor = layer.connection_string("notes", cipher="k")

        assert descriptor.database == os.path.join(data_dir, "notes.db")
        assert descriptor.driver == "sqlcipher3"
        assert descriptor.busy_timeout_ms == 250
        assert descriptor.wal_mode is False
        assert layer.authenticator.driver == "sqlcipher3"
        assert layer.integrity_validator.driver == "sqlcipher3"
        assert layer.integrity_validator.busy_timeout_ms == 250

    @pytest.mark.asyncio
    async def test_repository_opened_from_storage(self, ctx, notes_cls, data_dir):
        """A repository built from the layer's storage opens, checks and authenticates."""
        config = DataLayerConfig(storage=StorageConfig(data_dir=data_dir, wal_mode=True))
        layer = DataLayer(config, RepositoryRegistry(), InMemoryCompatibilityService(current_version=3))
        notes = notes_cls(descriptor=layer.connection_string("notes", cipher="k", create=True))
        await notes.provision(ctx)
        layer.register(ctx, notes)
        path = config.storage.database_path("notes")

        try:
            assert await layer.start(ctx) is True
            assert notes.audit(ctx, "PRAGMA journal_mode", lambda c: c.scalar()) == "wal"
            assert await layer.authenticator.authenticate("k", path) is True
            assert await layer.integrity_validator.validate(ctx, "k", path) is True
        finally:
            await layer.stop(ctx)


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield root
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self, restore_root):
        """JSON format installs the json_log_formatter formatter."""
        import json_log_formatter

        setup_logging(ObservabilityConfig(log_level="DEBUG", log_format="json"))

        assert restore_root.level == logging.DEBUG
        assert len(restore_root.handlers) == 1
        assert isinstance(restore_root.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_text_format(self, restore_root):
        setup_logging(ObservabilityConfig(log_level="warning", log_format="text"))

        assert restore_root.level == logging.WARNING
        assert type(restore_root.handlers[0].formatter) is logging.Formatter
