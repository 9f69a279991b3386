"""Tests for identity resolution and the run-scoped identity cache."""

from pathlib import PurePosixPath

import pytest

from resource_kernel.errors import (
    IdentityImmutableError,
    ResourceKernelError,
    UnknownAttributeError,
)
from resource_kernel.models.events import EventKind
from resource_kernel.runtime.cache import IdentityCache
from resource_kernel.runtime.context import RunContext
from resource_kernel.schema.builder import SchemaBuilder
from resource_kernel.schema.kinds import Anything, PathKind, String


def _make_file_type():
    builder = SchemaBuilder("file")
    builder.attribute("path", PathKind, identity=True)
    builder.attribute("content", String)
    return builder.build()


def _make_gem_type():
    builder = SchemaBuilder("gem")
    builder.attribute("source", String, identity=True)
    builder.attribute("name", String, identity=True)
    builder.attribute("version", String)
    return builder.build()


class TestIdentityCache:
    def setup_method(self):
        self.File = _make_file_type()
        self.Gem = _make_gem_type()

    def test_get_or_create_once(self):
        cache = IdentityCache()
        made = []

        def factory():
            made.append(object())
            return made[-1]

        first, created = cache.get_or_create((self.File, ("/a",)), factory)
        second, created_again = cache.get_or_create((self.File, ("/a",)), factory)

        assert created is True
        assert created_again is False
        assert first is second
        assert len(made) == 1
        assert len(cache) == 1

    def test_unhashable_identity_rejected(self):
        cache = IdentityCache()
        with pytest.raises(ResourceKernelError):
            cache.get_or_create((self.File, (["a"],)), object)

    def test_evict_and_of_type(self):
        cache = IdentityCache()
        cache.get_or_create((self.File, ("/a",)), lambda: "a")
        cache.get_or_create((self.Gem, ("rubygems.org", "rake")), lambda: "rake")

        assert cache.of_type("file") == ["a"]
        assert cache.evict((self.File, ("/a",))) is True
        assert cache.evict((self.File, ("/a",))) is False
        assert (self.File, ("/a",)) not in cache


class TestResolution:
    def setup_method(self):
        self.File = _make_file_type()
        self.Gem = _make_gem_type()
        self.ctx = RunContext()

    def test_same_identity_same_instance(self):
        a = self.ctx.resolve(self.File, "/tmp/x.txt")
        b = self.ctx.resolve(self.File, path="/tmp/x.txt")
        assert a is b
        assert len(self.ctx.instances) == 1

    def test_identity_compared_after_coercion(self):
        a = self.ctx.resolve(self.File, PurePosixPath("/tmp/x.txt"))
        b = self.ctx.resolve(self.File, "/tmp/x.txt")
        assert a is b
        assert a["path"] == "/tmp/x.txt"

    def test_different_identity_different_instance(self):
        a = self.ctx.resolve(self.File, "/tmp/x.txt")
        b = self.ctx.resolve(self.File, "/tmp/y.txt")
        assert a is not b

    def test_runs_do_not_share_instances(self):
        a = self.ctx.resolve(self.File, "/tmp/x.txt")
        b = RunContext().resolve(self.File, "/tmp/x.txt")
        assert a is not b

    def test_multiple_positional_identities(self):
        gem = self.ctx.resolve(self.Gem, "rubygems.org", "rake")
        assert gem.identity == {"source": "rubygems.org", "name": "rake"}
        assert gem.identity_key == ("rubygems.org", "rake")
        assert self.ctx.get(self.Gem, "rubygems.org", "rake") is gem

    def test_keyword_identity_fills_before_positionals(self):
        gem = self.ctx.resolve(self.Gem, "rake", source="rubygems.org")
        assert gem.identity == {"source": "rubygems.org", "name": "rake"}

    def test_too_many_positionals(self):
        with pytest.raises(TypeError):
            self.ctx.resolve(self.File, "/tmp/x.txt", "/tmp/y.txt")

    def test_missing_required_identity(self):
        with pytest.raises(TypeError):
            self.ctx.resolve(self.Gem, "rubygems.org")

    def test_unknown_attribute_in_resolve(self):
        with pytest.raises(UnknownAttributeError):
            self.ctx.resolve(self.File, "/tmp/x.txt", size=10)

    def test_desired_values_applied_on_every_resolve(self):
        self.ctx.resolve(self.File, "/tmp/x.txt", content="one")
        f = self.ctx.resolve(self.File, "/tmp/x.txt", content="two")
        assert f["content"] == "two"

    def test_created_event_recorded_once(self):
        self.ctx.resolve(self.File, "/tmp/x.txt")
        self.ctx.resolve(self.File, "/tmp/x.txt")
        assert len(self.ctx.events.of_kind(EventKind.CREATED)) == 1

    def test_unhashable_identity_after_coercion(self):
        builder = SchemaBuilder("query")
        builder.attribute("filters", Anything, identity=True)
        Query = builder.build()
        with pytest.raises(ResourceKernelError):
            self.ctx.resolve(Query, {"a": 1})

    def test_types_sharing_a_name_do_not_share_instances(self):
        first = SchemaBuilder("account").attribute("name", String, identity=True).build()
        second = SchemaBuilder("account").attribute("name", String, identity=True).build()

        a = self.ctx.resolve(first, "bob")
        b = self.ctx.resolve(second, "bob")

        assert a is not b
        assert a.resource_type is first
        assert b.resource_type is second
        assert self.ctx.get(second, "bob") is b
        assert len(self.ctx.cache.of_type("account")) == 2

    def test_evict_gives_fresh_instance(self):
        a = self.ctx.resolve(self.File, "/tmp/x.txt")
        assert self.ctx.evict(a) is True
        assert self.ctx.evict(a) is False
        b = self.ctx.resolve(self.File, "/tmp/x.txt")
        assert a is not b


class TestIdentityImmutability:
    def setup_method(self):
        self.ctx = RunContext()
        self.file = self.ctx.resolve(_make_file_type(), "/tmp/x.txt")

    def test_changing_identity_raises(self):
        with pytest.raises(IdentityImmutableError):
            self.file["path"] = "/tmp/other.txt"
        assert self.file["path"] == "/tmp/x.txt"

    def test_setting_equal_identity_is_allowed(self):
        self.file["path"] = PurePosixPath("/tmp/x.txt")
        assert self.file.dirty == []

    def test_identity_cannot_be_reset(self):
        with pytest.raises(IdentityImmutableError):
            self.file.reset("path")
