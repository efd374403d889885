"""
Shared fixtures for repocore tests.

Provides:
- RecordingContext: Context that keeps messages and exceptions in lists
- FakeRepository: in-memory repository recording lifecycle calls
- NotesRepository: small SQLite repository with two schema patches
"""

import tempfile

import pytest

from repocore.compat import VersionPatch
from repocore.diagnostics import Context
from repocore.repository import Repository
from repocore.sqlite import SqliteConnectionString, SqliteRepository


class RecordingContext(Context):
    """Context collecting everything logged through it."""

    def __init__(self, correlation_id=None, on_login_failed=None, messages=None, exceptions=None):
        super().__init__(correlation_id=correlation_id, on_login_failed=on_login_failed)
        self.messages = [] if messages is None else messages
        self.exceptions = [] if exceptions is None else exceptions

    def log_message(self, message):
        self.messages.append(message)

    def log_exception(self, exception):
        self.exceptions.append(exception)

    def bind(self, on_login_failed=None):
        return RecordingContext(
            correlation_id=self.correlation_id,
            on_login_failed=on_login_failed,
            messages=self.messages,
            exceptions=self.exceptions,
        )


class FakeRepository(Repository):
    """Repository that records calls as (tag, operation) tuples."""

    def __init__(self, name, calls, fail_on=(), init_result=True, entity_tags=(), patches=()):
        super().__init__()
        self.name = name
        self.calls = calls
        self.fail_on = set(fail_on)
        self.init_result = init_result
        self.entity_tags = tuple(entity_tags)
        self.patches = list(patches)

    @property
    def tag(self):
        return self.name

    def _record(self, operation):
        self.calls.append((self.name, operation))
        if operation in self.fail_on:
            raise RuntimeError(f"{self.name} {operation} failed")

    async def initialize(self, ctx):
        self._record("initialize")
        self._set_valid(self.init_result)
        return self.init_result

    def contribute_patches(self, ctx, compat):
        self._record("register_patches")
        for entity, patch in self.patches:
            compat.register_patch(entity, patch)

    async def execute_patches(self, ctx, compat):
        self._record("execute_patches")
        await super().execute_patches(ctx, compat)

    async def close(self):
        self._closed = True
        self._set_valid(False)
        self._record("close")


class NotesRepository(SqliteRepository):
    """Notes store: version 2 creates the table, version 3 adds tags."""

    repository_tag = "notes"
    entity_tags = ("notes",)

    def __init__(self, path=None, cipher=None, create=False, descriptor=None):
        super().__init__()
        self.path = path
        self.cipher = cipher
        self.create = create
        self.descriptor = descriptor

    def connection_string(self):
        if self.descriptor is not None:
            return self.descriptor
        return SqliteConnectionString(
            database=self.path,
            cipher=self.cipher,
            wal_mode=False,
            create=self.create,
        )

    def contribute_patches(self, ctx, compat):
        compat.register_patch("notes", VersionPatch(2, self._create_table))
        compat.register_patch("notes", VersionPatch(3, self._add_tags))

    async def _create_table(self, ctx):
        self.audit(
            ctx,
            "CREATE TABLE IF NOT EXISTS notes (id INTEGER PRIMARY KEY, body TEXT NOT NULL)",
            lambda c: c.execute(),
        )
        return self.has_column(ctx, "body")

    async def _add_tags(self, ctx):
        if not self.has_column(ctx, "tags"):
            self.audit(ctx, "ALTER TABLE notes ADD COLUMN tags TEXT", lambda c: c.execute())
        return self.has_column(ctx, "tags")

    def has_column(self, ctx, column):
        rows = self.audit(ctx, "PRAGMA table_info(notes)", lambda c: c.query())
        return any(row["name"] == column for row in rows or [])

    def add(self, ctx, body):
        return self.audit(ctx, "INSERT INTO notes (body) VALUES (?)", lambda c: c.execute(body))

    def count(self, ctx):
        return self.audit(ctx, "SELECT count(*) FROM notes", lambda c: c.scalar())


@pytest.fixture
def ctx():
    """Recording diagnostics context."""
    return RecordingContext()


@pytest.fixture
def calls():
    """Shared call log for fake repositories."""
    return []


@pytest.fixture
def make_repo(calls):
    """Factory for FakeRepository instances sharing the call log."""

    def factory(name, **kwargs):
        return FakeRepository(name, calls, **kwargs)

    return factory


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def notes_cls():
    """The SQLite notes repository class."""
    return NotesRepository
