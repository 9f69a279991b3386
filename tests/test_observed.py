"""Tests for the lazy observed-state loader and default memoization."""

import pytest

from resource_kernel.errors import IdentityImmutableError, LoadError, TypeMismatchError
from resource_kernel.models.events import EventKind
from resource_kernel.models.report import ResourceState
from resource_kernel.runtime.context import RunContext
from resource_kernel.runtime.observed import LoadResult
from resource_kernel.schema.attribute import ABSENT, lazy
from resource_kernel.schema.builder import SchemaBuilder
from resource_kernel.schema.kinds import Integer, String


def _make_package_type(loader=None, load_size=None):
    builder = SchemaBuilder("package")
    builder.attribute("name", String, identity=True)
    builder.attribute("version", String)
    builder.attribute("size", Integer(), load_value=load_size)
    if loader is not None:
        builder.load(loader)
    return builder.build()


class TestLoader:
    def setup_method(self):
        self.loads = []
        self.ctx = RunContext()

    def _loader(self, observed):
        self.loads.append(observed["name"])
        observed["version"] = "1.0"

    def test_loader_runs_lazily_and_once(self):
        Package = _make_package_type(self._loader)
        pkg = self.ctx.resolve(Package, "curl")
        pkg["version"] = "2.0"

        assert self.loads == []
        assert pkg["version"] == "2.0"
        assert self.loads == []
        assert pkg.current_value("version") == "1.0"
        assert pkg.observed()["version"] == "1.0"
        pkg.converge()
        assert self.loads == ["curl"]
        assert pkg.observed_loaded

    def test_loader_result_object(self):
        Package = _make_package_type(
            lambda observed: LoadResult(exists=True, attributes={"version": "3.1"})
        )
        pkg = self.ctx.resolve(Package, "curl")
        assert pkg["version"] == "3.1"
        assert pkg.state == ResourceState.LOADED

    def test_loader_result_mapping(self):
        Package = _make_package_type(lambda observed: {"exists": False})
        pkg = self.ctx.resolve(Package, "curl")
        assert pkg.exists is False
        assert pkg.state == ResourceState.NOT_EXISTS

    def test_loader_bad_return_type(self):
        Package = _make_package_type(lambda observed: "oops")
        pkg = self.ctx.resolve(Package, "curl")
        with pytest.raises(LoadError):
            pkg.observed()

    def test_loaded_values_are_coerced(self):
        def loader(observed):
            observed["size"] = "2048"

        pkg = self.ctx.resolve(_make_package_type(loader), "curl")
        assert pkg["size"] == 2048

    def test_no_loader_means_exists_without_values(self):
        pkg = self.ctx.resolve(_make_package_type(), "curl")
        assert pkg.exists is True
        assert pkg["version"] is ABSENT
        assert pkg.observed().to_dict() == {"name": "curl"}


class TestLoadFailure:
    def setup_method(self):
        self.attempts = 0
        self.ctx = RunContext()

        def loader(observed):
            self.attempts += 1
            raise ConnectionError("registry unreachable")

        self.Package = _make_package_type(loader)

    def test_failure_raises_load_error(self):
        pkg = self.ctx.resolve(self.Package, "curl")
        with pytest.raises(LoadError) as exc:
            pkg.observed()
        assert isinstance(exc.value.cause, ConnectionError)
        assert exc.value.resource is pkg
        assert pkg.state == ResourceState.LOAD_FAILED

    def test_failure_is_memoized(self):
        pkg = self.ctx.resolve(self.Package, "curl")
        with pytest.raises(LoadError):
            pkg.observed()
        with pytest.raises(LoadError):
            pkg["version"]
        assert self.attempts == 1

    def test_failure_is_recorded(self):
        pkg = self.ctx.resolve(self.Package, "curl")
        with pytest.raises(LoadError):
            pkg.observed()
        kinds = [e.kind for e in self.ctx.events_for(pkg)]
        assert kinds == [EventKind.CREATED, EventKind.LOAD_STARTED, EventKind.LOAD_FAILED]

    def test_evict_allows_retry(self):
        pkg = self.ctx.resolve(self.Package, "curl")
        with pytest.raises(LoadError):
            pkg.observed()
        self.ctx.evict(pkg)
        retry = self.ctx.resolve(self.Package, "curl")
        with pytest.raises(LoadError):
            retry.observed()
        assert self.attempts == 2


class TestLoadValue:
    def setup_method(self):
        self.sizes = []
        self.ctx = RunContext()

    def _load_size(self, observed):
        self.sizes.append(observed["name"])
        return 512

    def test_load_value_runs_on_first_read_only(self):
        Package = _make_package_type(lambda o: None, load_size=self._load_size)
        pkg = self.ctx.resolve(Package, "curl")

        pkg.observed()
        assert self.sizes == []
        assert pkg["size"] == 512
        assert pkg["size"] == 512
        assert self.sizes == ["curl"]

    def test_load_value_skipped_when_loader_set_value(self):
        def loader(observed):
            observed["size"] = 100

        Package = _make_package_type(loader, load_size=self._load_size)
        pkg = self.ctx.resolve(Package, "curl")
        assert pkg["size"] == 100
        assert self.sizes == []

    def test_load_value_skipped_when_absent(self):
        Package = _make_package_type(lambda o: o.mark_absent(), load_size=self._load_size)
        pkg = self.ctx.resolve(Package, "curl")
        assert pkg["size"] is ABSENT
        assert self.sizes == []

    def test_load_value_failure_is_memoized(self):
        calls = []

        def load_size(observed):
            calls.append(1)
            raise OSError("stat failed")

        Package = _make_package_type(lambda o: None, load_size=load_size)
        pkg = self.ctx.resolve(Package, "curl")
        with pytest.raises(LoadError) as exc:
            pkg["size"]
        assert exc.value.attribute == "size"
        with pytest.raises(LoadError):
            pkg["size"]
        assert len(calls) == 1
        # Other attributes are unaffected
        assert pkg["version"] is ABSENT


class TestLoaderIdentity:
    def setup_method(self):
        self.ctx = RunContext()

    def test_loader_fills_unset_identity(self):
        def loader(observed):
            if observed["email"] == "bob@example.com":
                observed["username"] = "bob"

        builder = SchemaBuilder("user")
        builder.attribute("username", String, identity=True, default=None)
        builder.attribute(
            "email", String, identity=True, default=None, matches=lambda v: "@" in v,
        )
        builder.load(loader)
        User = builder.build()

        user = self.ctx.resolve(User, "bob@example.com")
        assert user["username"] == "bob"
        assert user.identity["username"] is None

    def test_loader_cannot_change_bound_identity(self):
        def loader(observed):
            observed["name"] = "wget"

        pkg = self.ctx.resolve(_make_package_type(loader), "curl")
        with pytest.raises(LoadError) as exc:
            pkg.observed()
        assert isinstance(exc.value.cause, IdentityImmutableError)


class TestDefaultMemoization:
    def test_lazy_default_evaluated_once(self):
        counter = {"n": 0}

        def next_port(instance):
            counter["n"] += 1
            return 8000 + counter["n"]

        builder = SchemaBuilder("service")
        builder.attribute("name", String, identity=True)
        builder.attribute("port", Integer(), default=lazy(next_port))
        Service = builder.build()

        svc = RunContext().resolve(Service, "web")
        assert svc["port"] == 8001
        assert svc["port"] == 8001
        assert counter["n"] == 1

    def test_lazy_default_sees_instance(self):
        builder = SchemaBuilder("service")
        builder.attribute("name", String, identity=True)
        builder.attribute("unit", String, default=lazy(lambda i: f"{i['name']}.service"))
        Service = builder.build()

        assert RunContext().resolve(Service, "web")["unit"] == "web.service"

    def test_defaults_are_not_dirty(self):
        builder = SchemaBuilder("service")
        builder.attribute("name", String, identity=True)
        builder.attribute("enabled", default=True)
        Service = builder.build()

        svc = RunContext().resolve(Service, "web")
        assert svc["enabled"] is True
        assert svc.dirty == []
        assert svc.to_dict(only="explicit") == {"name": "web"}

    def test_lazy_default_is_coerced(self):
        builder = SchemaBuilder("file")
        builder.attribute("path", String, identity=True)
        builder.attribute("mode", Integer(base=8), default=lazy(lambda i: "0644"))
        File = builder.build()

        f = RunContext().resolve(File, "/tmp/x.txt")
        assert f["mode"] == 0o644

    def test_lazy_default_of_wrong_kind_is_rejected(self):
        builder = SchemaBuilder("service")
        builder.attribute("name", String, identity=True)
        builder.attribute("port", Integer(), default=lazy(lambda i: [8080]))
        Service = builder.build()

        svc = RunContext().resolve(Service, "web")
        with pytest.raises(TypeMismatchError) as exc:
            svc["port"]
        assert exc.value.attribute == "port"

    def test_lazy_none_default_on_nullable_attribute(self):
        builder = SchemaBuilder("service")
        builder.attribute("name", String, identity=True)
        builder.attribute("description", String, default=lazy(lambda i: None), nullable=True)
        Service = builder.build()

        assert RunContext().resolve(Service, "web")["description"] is None
