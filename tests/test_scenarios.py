"""End-to-end convergence scenarios against in-memory adapters."""

from resource_kernel.converge.diff import set_delta
from resource_kernel.models.report import ActionStatus, ResourceState
from resource_kernel.runtime.context import RunContext
from resource_kernel.schema.attribute import ABSENT
from resource_kernel.schema.builder import SchemaBuilder
from resource_kernel.schema.kinds import Integer, PathKind, SetOf, String


def _make_gem_type(registry: dict, calls: list):
    """A gem whose owners live in an in-memory registry: {name: set(emails)}."""

    def load(observed):
        name = observed["name"]
        if name not in registry:
            observed.mark_absent()
            return
        observed["owners"] = registry[name]

    def converge_owners(desired, observed):
        additions, removals = set_delta(desired, observed, "owners")
        if desired.policy.never_remove:
            removals = set()
        owners = registry.setdefault(desired["name"], set())
        owners |= additions
        owners -= removals
        calls.append(("owners", additions, removals))
        return {"added": additions, "removed": removals}

    builder = SchemaBuilder("gem")
    builder.attribute("name", String, identity=True)
    builder.attribute("owners", SetOf(String))
    builder.load(load)
    builder.converge("owners", converge_owners)
    return builder.build()


def _make_file_type(fs: dict, calls: list):
    """A file in an in-memory filesystem: {path: {"content": str, "mode": int}}."""

    def load(observed):
        path = observed["path"]
        if path not in fs:
            observed.mark_absent()
            return
        observed["content"] = fs[path]["content"]
        observed["mode"] = fs[path]["mode"]

    def write_content(desired, observed):
        entry = fs.setdefault(desired["path"], {"content": "", "mode": 0o644})
        entry["content"] = desired["content"]
        calls.append("content")

    def write_mode(desired, observed):
        fs[desired["path"]]["mode"] = desired["mode"]
        calls.append("mode")

    builder = SchemaBuilder("file")
    builder.attribute("path", PathKind, identity=True)
    builder.attribute("mode", Integer(base=8))
    builder.attribute("content", String)
    builder.load(load)
    builder.converge("content", write_content)
    builder.converge("mode", write_mode)
    return builder.build()


class TestGemOwnersScenario:
    def setup_method(self):
        self.registry = {"rake": {"a@x.com"}}
        self.calls = []
        self.Gem = _make_gem_type(self.registry, self.calls)
        self.ctx = RunContext()

    def test_adds_missing_owner(self):
        gem = self.ctx.resolve(self.Gem, "rake")
        gem["owners"] = {"a@x.com", "b@x.com"}

        report = gem.converge()

        assert self.calls == [("owners", {"b@x.com"}, set())]
        assert report.executed_actions == ["owners"]
        assert report.actions[0].detail == {"added": ["b@x.com"], "removed": []}
        assert report.changes[0].desired == ["a@x.com", "b@x.com"]
        assert report.changes[0].observed == ["a@x.com"]
        assert self.registry["rake"] == {"a@x.com", "b@x.com"}
        assert gem.state == ResourceState.CONVERGED

    def test_second_converge_executes_nothing(self):
        gem = self.ctx.resolve(self.Gem, "rake", owners=["a@x.com", "b@x.com"])
        gem.converge()

        report = gem.converge()

        assert len(self.calls) == 1
        assert report.executed_actions == []
        assert report.actions[0].status == ActionStatus.SKIPPED
        assert report.describe() == "skip gem[rake]: no values changed"

    def test_fresh_run_after_converge_is_up_to_date(self):
        self.ctx.resolve(self.Gem, "rake", owners={"a@x.com", "b@x.com"}).converge()

        again = RunContext().resolve(self.Gem, "rake", owners={"b@x.com", "a@x.com"})
        report = again.converge()

        assert report.executed_actions == []
        assert len(self.calls) == 1

    def test_never_remove_keeps_extra_owners(self):
        self.registry["rake"] = {"a@x.com", "c@x.com"}
        gem = self.ctx.resolve(self.Gem, "rake", owners={"a@x.com"})
        gem.configure(never_remove=True)

        gem.converge()

        assert self.calls == [("owners", set(), set())]
        assert self.registry["rake"] == {"a@x.com", "c@x.com"}

    def test_removes_owner_by_default(self):
        self.registry["rake"] = {"a@x.com", "c@x.com"}
        gem = self.ctx.resolve(self.Gem, "rake", owners={"a@x.com"})

        gem.converge()

        assert self.calls == [("owners", set(), {"c@x.com"})]
        assert self.registry["rake"] == {"a@x.com"}

    def test_missing_gem_is_created(self):
        gem = self.ctx.resolve(self.Gem, "rspec", owners={"a@x.com"})

        report = gem.converge()

        assert report.existed is False
        assert report.describe().startswith("create gem[rspec]")
        assert self.registry["rspec"] == {"a@x.com"}


class TestFileScenario:
    def setup_method(self):
        self.fs = {}
        self.calls = []
        self.File = _make_file_type(self.fs, self.calls)
        self.ctx = RunContext()

    def test_missing_file_reads_absent(self):
        f = self.ctx.resolve(self.File, "/tmp/x.txt")

        assert f.exists is False
        assert f.observed()["content"] is ABSENT
        assert f["content"] is ABSENT
        assert f.state == ResourceState.NOT_EXISTS

    def test_content_action_runs_without_mode(self):
        f = self.ctx.resolve(self.File, "/tmp/x.txt")
        f["content"] = "hello"

        report = f.converge()

        assert self.calls == ["content"]
        assert report.changed_attributes == ["content"]
        assert [a.status for a in report.actions] == [ActionStatus.EXECUTED, ActionStatus.SKIPPED]
        assert self.fs["/tmp/x.txt"]["content"] == "hello"

    def test_mode_change_does_not_rewrite_content(self):
        self.fs["/tmp/x.txt"] = {"content": "hello", "mode": 0o644}
        f = self.ctx.resolve(self.File, "/tmp/x.txt", content="hello", mode="0600")

        report = f.converge()

        assert self.calls == ["mode"]
        assert report.describe() == (
            "update file[/tmp/x.txt]\n"
            "  set mode to 384 (was 420)"
        )

    def test_equal_octal_mode_is_not_a_change(self):
        self.fs["/tmp/x.txt"] = {"content": "hello", "mode": 0o644}
        f = self.ctx.resolve(self.File, "/tmp/x.txt", mode="0644")

        report = f.converge()

        assert report.changes == []
        assert self.calls == []

    def test_unset_attributes_read_current_values(self):
        self.fs["/tmp/x.txt"] = {"content": "hello", "mode": 0o600}
        f = self.ctx.resolve(self.File, "/tmp/x.txt", content="bye")

        assert f["mode"] == 0o600
        assert f["content"] == "bye"
        assert f.to_dict(only="changed") == {"content": "bye"}
