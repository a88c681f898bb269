"""Tests for session-scoped entry handles."""

import pytest

from portregistry.errors import HandleNotFoundError
from portregistry.storage.handles import HANDLE_PREFIX
from portregistry.storage.manager import Registry


class TestHandleRegistry:
    def test_handles_are_unique(self, registry: Registry, sample_entries):
        handles = [entry.handle for entry in sample_entries.values()]

        assert len(set(handles)) == len(handles)
        assert all(handle.startswith(HANDLE_PREFIX) for handle in handles)
        assert len(registry.handles) == 5

    def test_resolve(self, registry: Registry, sample_entries):
        vim = sample_entries["vim1"]

        assert registry.handles.resolve(vim.handle) is vim

    def test_resolve_unknown(self, registry: Registry):
        with pytest.raises(HandleNotFoundError, match='could not find entry "entry42"'):
            registry.handles.resolve("entry42")

    def test_handle_recorded_in_session_table(self, registry: Registry, sample_entries):
        zlib = sample_entries["zlib"]

        assert registry.handles.handle_for(zlib.id) == zlib.handle
        assert registry.handles.handle_for(9999) is None

    def test_same_row_same_object(self, registry: Registry, sample_entries):
        pcre = sample_entries["pcre"]

        assert registry.handles.expose(pcre.id) is pcre
        assert registry.entries.lookup("pcre", "7.1", 1, "utf8 +") is pcre

    def test_release(self, registry: Registry, sample_entries):
        """Test that releasing a handle leaves the entry in storage."""
        pcre = sample_entries["pcre"]
        handle = pcre.handle

        registry.handles.release(handle)

        assert not registry.handles.exists(handle)
        assert registry.handles.handle_for(pcre.id) is None
        assert registry.entries.count() == 5
        with pytest.raises(HandleNotFoundError):
            pcre.get("name")

    def test_release_then_reexpose(self, registry: Registry, sample_entries):
        pcre = sample_entries["pcre"]
        registry.handles.release(pcre.handle)

        again = registry.entries.lookup("pcre", "7.1", 1, "utf8 +")
        assert again is not pcre
        assert again.handle != pcre.handle
        assert again.get("variants") == "utf8 +"

    def test_release_unknown(self, registry: Registry):
        with pytest.raises(HandleNotFoundError):
            registry.handles.release("entry42")

    def test_release_entries_ignores_unknown_ids(self, registry: Registry, sample_entries):
        registry.handles.release_entries([9999, sample_entries["zlib"].id])

        assert len(registry.handles) == 4

    def test_close_invalidates_handles(self, registry: Registry, sample_entries):
        vim = sample_entries["vim3"]

        registry.close()

        assert len(registry.handles) == 0
        with pytest.raises(HandleNotFoundError):
            vim.describe()

    def test_handles_do_not_survive_reopen(self, registry_path):
        with Registry(registry_path) as first:
            old = first.entries.create("vim", "7.1.002")
            old_handle = old.handle

        with Registry(registry_path) as second:
            assert not second.entries.exists(old_handle)
            (entry,) = second.entries.search({"name": "vim"})
            assert entry is not old
            assert entry.get("version") == "7.1.002"
