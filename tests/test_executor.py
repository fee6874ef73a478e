"""Tests for the pipeline executor and its rollback guarantees."""
from __future__ import annotations

import os
import signal
from pathlib import Path

import httpx
import pytest
from conftest import FakeHost

from deployctl.actions import Action, CreateDatabase, UndoStatus, WriteFile, WriteProxyConfig
from deployctl.errors import ActionError, RunInterrupted, VerificationTimeout
from deployctl.logging import StructuredLogger
from deployctl.models import ResourceDescriptor, ResourceKind
from deployctl.pipeline import (
    PipelineExecutor,
    PipelineState,
    RollbackStatus,
    Stage,
)
from deployctl.providers import DatabaseError
from deployctl.state.registry import StateRegistry
from deployctl.state.resources import ResourceRegistry
from deployctl.verification import EndpointCheck, VerificationProbe


class Recorder(Action):
    """Action that appends to a shared journal instead of touching the host."""

    name = "recorder"

    def __init__(
        self,
        identifier: str,
        journal: list[str],
        toolkit,
        *,
        fail_apply: BaseException | None = None,
        fail_undo: bool = False,
    ) -> None:
        super().__init__(
            ResourceDescriptor(ResourceKind.RENDERED_FILE, identifier, f"/tmp/{identifier}"),
            toolkit,
        )
        self.journal = journal
        self.fail_apply = fail_apply
        self.fail_undo = fail_undo

    def _apply(self) -> bool:
        if self.fail_apply is not None:
            raise self.fail_apply
        self.journal.append(f"apply:{self.descriptor.identifier}")
        return True

    def _undo(self) -> UndoStatus:
        if self.fail_undo:
            raise OSError("device busy")
        self.journal.append(f"undo:{self.descriptor.identifier}")
        return UndoStatus.REVERTED


class Killer(Action):
    """Action that delivers SIGTERM to the current process mid-run."""

    name = "killer"

    def _apply(self) -> bool:
        os.kill(os.getpid(), signal.SIGTERM)
        return True

    def _undo(self) -> UndoStatus:
        return UndoStatus.REVERTED


@pytest.fixture
def registry(tmp_path: Path) -> ResourceRegistry:
    return ResourceRegistry(StateRegistry(tmp_path / "registry"))


def _no_sleep(_: float) -> None:
    return None


def test_success_commits_every_applied_action(host: FakeHost, registry: ResourceRegistry) -> None:
    """A clean run ends COMMITTED with every action persisted in order."""
    journal: list[str] = []
    stages = [
        Stage("dependencies", [Recorder("a", journal, host.toolkit)]),
        Stage("database", [Recorder("b", journal, host.toolkit), Recorder("c", journal, host.toolkit)]),
    ]
    executor = PipelineExecutor(
        "demo", stages, registry, metadata={"type": "backend"}, handle_signals=False
    )

    report = executor.run()

    assert report.state is PipelineState.COMMITTED
    assert report.committed
    assert report.changed == 3
    assert journal == ["apply:a", "apply:b", "apply:c"]
    record = registry.load("demo")
    assert record is not None
    assert [res.descriptor.identifier for res in record.resources] == ["a", "b", "c"]
    assert [res.stage for res in record.resources] == ["dependencies", "database", "database"]
    assert record.metadata == {"type": "backend"}
    assert registry.entries == ()


def test_failure_rolls_back_in_reverse_order(host: FakeHost, registry: ResourceRegistry) -> None:
    """The failing action is not undone; earlier ones are, newest first."""
    journal: list[str] = []
    stages = [
        Stage("dependencies", [Recorder("a", journal, host.toolkit)]),
        Stage("database", [Recorder("b", journal, host.toolkit)]),
        Stage(
            "runtime-config",
            [Recorder("c", journal, host.toolkit, fail_apply=OSError("disk full"))],
        ),
    ]
    executor = PipelineExecutor("demo", stages, registry, handle_signals=False)

    with pytest.raises(ActionError, match="disk full"):
        executor.run()

    assert journal == ["apply:a", "apply:b", "undo:b", "undo:a"]
    assert executor.state is PipelineState.ROLLED_BACK
    assert [entry.descriptor.identifier for entry in executor.report.rollback] == ["b", "a"]
    assert all(e.status is RollbackStatus.ROLLED_BACK for e in executor.report.rollback)
    assert registry.load("demo") is None


def test_failed_check_rolls_back(host: FakeHost, registry: ResourceRegistry) -> None:
    """A stage check that raises aborts the run like a failing action."""
    journal: list[str] = []

    def broken() -> None:
        raise ActionError(
            ResourceDescriptor(ResourceKind.SERVICE_UNIT, "gunicorn-demo.service", "unit"),
            "not active",
        )

    stages = [Stage("runtime-config", [Recorder("a", journal, host.toolkit)], [broken])]
    executor = PipelineExecutor("demo", stages, registry, handle_signals=False)

    with pytest.raises(ActionError):
        executor.run()

    assert journal == ["apply:a", "undo:a"]


def test_undo_failure_is_reported_for_manual_cleanup(
    host: FakeHost, registry: ResourceRegistry
) -> None:
    """An undo that fails is collected and the rest of the rollback continues."""
    journal: list[str] = []
    stages = [
        Stage(
            "dependencies",
            [
                Recorder("a", journal, host.toolkit),
                Recorder("b", journal, host.toolkit, fail_undo=True),
                Recorder("c", journal, host.toolkit, fail_apply=RuntimeError("boom")),
            ],
        )
    ]
    executor = PipelineExecutor("demo", stages, registry, handle_signals=False)

    with pytest.raises(ActionError, match="boom"):
        executor.run()

    report = executor.report
    assert journal == ["apply:a", "apply:b", "undo:a"]
    assert [e.descriptor.identifier for e in report.manual_cleanup] == ["b"]
    assert "device busy" in (report.manual_cleanup[0].detail or "")
    assert [e.descriptor.identifier for e in report.rolled_back] == ["a"]
    assert any("could not undo" in warning for warning in report.warnings)


def test_keyboard_interrupt_triggers_rollback(host: FakeHost, registry: ResourceRegistry) -> None:
    """Ctrl-C propagates after the applied actions are undone."""
    journal: list[str] = []
    stages = [
        Stage(
            "dependencies",
            [
                Recorder("a", journal, host.toolkit),
                Recorder("b", journal, host.toolkit, fail_apply=KeyboardInterrupt()),
            ],
        )
    ]
    executor = PipelineExecutor("demo", stages, registry, handle_signals=False)

    with pytest.raises(KeyboardInterrupt):
        executor.run()

    assert journal == ["apply:a", "undo:a"]
    assert executor.state is PipelineState.ROLLED_BACK


def test_sigterm_triggers_rollback(host: FakeHost, registry: ResourceRegistry) -> None:
    """SIGTERM during a run is turned into RunInterrupted and rolled back."""
    journal: list[str] = []
    killer = Killer(
        ResourceDescriptor(ResourceKind.RENDERED_FILE, "kill", "/tmp/kill"), host.toolkit
    )
    stages = [Stage("dependencies", [Recorder("a", journal, host.toolkit), killer])]
    previous = signal.getsignal(signal.SIGTERM)
    executor = PipelineExecutor("demo", stages, registry)

    with pytest.raises(RunInterrupted) as excinfo:
        executor.run()

    assert excinfo.value.signum == signal.SIGTERM
    assert journal == ["apply:a", "undo:a"]
    assert registry.load("demo") is None
    assert signal.getsignal(signal.SIGTERM) == previous


def test_executor_refuses_second_run(host: FakeHost, registry: ResourceRegistry) -> None:
    executor = PipelineExecutor("demo", [], registry, handle_signals=False)
    executor.run()

    with pytest.raises(RuntimeError, match="already run"):
        executor.run()


def test_failed_rerun_keeps_previous_record(host: FakeHost, registry: ResourceRegistry) -> None:
    """A failed redeploy rolls back its own changes and leaves the commit intact."""
    journal: list[str] = []
    PipelineExecutor(
        "demo", [Stage("dependencies", [Recorder("a", journal, host.toolkit)])], registry,
        handle_signals=False,
    ).run()
    before = registry.load("demo")

    failing = PipelineExecutor(
        "demo",
        [Stage("dependencies", [Recorder("z", journal, host.toolkit, fail_apply=OSError("x"))])],
        registry,
        handle_signals=False,
    )
    with pytest.raises(ActionError):
        failing.run()

    assert registry.load("demo") == before


def test_steps_are_logged_to_operation(
    host: FakeHost, registry: ResourceRegistry, tmp_path: Path
) -> None:
    """Each applied action and rollback shows up as an operation step."""
    logger = StructuredLogger(tmp_path / "logs")
    journal: list[str] = []
    stages = [
        Stage(
            "dependencies",
            [
                Recorder("a", journal, host.toolkit),
                Recorder("b", journal, host.toolkit, fail_apply=OSError("nope")),
            ],
        )
    ]

    with pytest.raises(ActionError):
        with logger.operation("deploy", args={"name": "demo"}) as op:
            PipelineExecutor("demo", stages, registry, operation=op, handle_signals=False).run()

    names = [step["name"] for step in op.steps]
    assert "dependencies.rendered_file:a" in names
    assert "rollback.rendered_file:a" in names
    assert op.result is not None and op.result["status"] == "error"


def test_proxy_failure_drops_database_and_leaves_no_record(
    host: FakeHost, registry: ResourceRegistry
) -> None:
    """A database created earlier in the run is dropped when nginx rejects the site."""
    database = CreateDatabase(
        ResourceDescriptor(ResourceKind.DATABASE, "demo", "postgresql://localhost:5432/demo"),
        host.toolkit,
        database="demo",
        password="pw",
    )
    proxy = WriteProxyConfig(
        ResourceDescriptor(ResourceKind.PROXY_CONFIG, "demo", str(host.nginx.site_path("demo"))),
        host.toolkit,
        site="demo",
        content="server { listen 80; bogus; }\n",
    )
    host.nginx_test_failures.append('unknown directive "bogus"')
    stages = [Stage("database", [database]), Stage("reverse-proxy", [proxy])]
    executor = PipelineExecutor("demo", stages, registry, handle_signals=False)

    with pytest.raises(ActionError, match="bogus"):
        executor.run()

    assert "demo" not in host.postgres.databases
    assert not host.nginx.site_exists("demo")
    assert registry.load("demo") is None
    assert [(e.descriptor.identifier, e.status) for e in executor.report.rollback] == [
        ("demo", RollbackStatus.ROLLED_BACK)
    ]


def test_slow_start_commits_after_retries(host: FakeHost, registry: ResourceRegistry) -> None:
    """The probe tolerates a slow application start within its budget."""
    responses = iter([503, 502, 200])
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(next(responses))

    sleeps: list[float] = []
    probe = VerificationProbe(
        attempts=5, delay=2.0, transport=httpx.MockTransport(handler), sleep=sleeps.append
    )
    database = CreateDatabase(
        ResourceDescriptor(ResourceKind.DATABASE, "demo", "postgresql://localhost:5432/demo"),
        host.toolkit,
        database="demo",
        password="pw",
    )
    proxy = WriteProxyConfig(
        ResourceDescriptor(ResourceKind.PROXY_CONFIG, "demo", str(host.nginx.site_path("demo"))),
        host.toolkit,
        site="demo",
        content="server { listen 80; }\n",
    )
    check = EndpointCheck(probe, "http://demo.example.com/")
    stages = [
        Stage("database", [database]),
        Stage("reverse-proxy", [proxy]),
        Stage("verification", checks=[check]),
    ]

    report = PipelineExecutor("demo", stages, registry, handle_signals=False).run()

    assert report.committed
    assert check.result is not None and check.result.attempt_count == 3
    assert sleeps == [2.0, 2.0]
    assert len(seen) == 3
    record = registry.load("demo")
    assert record is not None
    assert len(record.resources) == 2


def test_exhausted_probe_rolls_back(host: FakeHost, registry: ResourceRegistry, tmp_path: Path) -> None:
    """A probe that never succeeds fails the run and removes what was written."""
    probe = VerificationProbe(
        attempts=2,
        delay=0.0,
        transport=httpx.MockTransport(lambda request: httpx.Response(502)),
        sleep=_no_sleep,
    )
    target = tmp_path / "gunicorn.conf.py"
    write = WriteFile(
        ResourceDescriptor(ResourceKind.RENDERED_FILE, str(target), str(target)),
        host.toolkit,
        path=target,
        content="workers = 3\n",
    )
    stages = [
        Stage("runtime-config", [write]),
        Stage("verification", checks=[EndpointCheck(probe, "http://demo.example.com/")]),
    ]
    executor = PipelineExecutor("demo", stages, registry, handle_signals=False)

    with pytest.raises(VerificationTimeout) as excinfo:
        executor.run()

    assert excinfo.value.result.attempt_count == 2
    assert excinfo.value.result.last_status == 502
    assert not target.exists()


def test_callable_metadata_is_resolved_at_commit(
    host: FakeHost, registry: ResourceRegistry
) -> None:
    """Metadata and summary callables see state produced during the run."""
    journal: list[str] = []
    action = Recorder("a", journal, host.toolkit)
    executor = PipelineExecutor(
        "demo",
        [Stage("dependencies", [action])],
        registry,
        metadata=lambda: {"applied": action.applied},
        summary=lambda: {"journal": list(journal)},
        handle_signals=False,
    )

    report = executor.run()

    assert report.record is not None and report.record.metadata == {"applied": True}
    assert report.summary == {"journal": ["apply:a"]}


def _refuse_grant(database: str, user: str) -> None:
    raise DatabaseError("psql failed (exit 1): permission denied for schema public")


def test_failing_action_reverts_its_own_partial_work(
    host: FakeHost, registry: ResourceRegistry, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A database created by an action that then fails is gone without a rollback entry."""
    monkeypatch.setattr(host.postgres, "grant_all", _refuse_grant)
    database = CreateDatabase(
        ResourceDescriptor(ResourceKind.DATABASE, "demo", "postgresql://localhost:5432/demo"),
        host.toolkit,
        database="demo",
        password="pw",
    )
    executor = PipelineExecutor(
        "demo", [Stage("database", [database])], registry, handle_signals=False
    )

    with pytest.raises(ActionError, match="permission denied"):
        executor.run()

    assert "demo" not in host.postgres.databases
    assert executor.report.rollback == []
    assert registry.load("demo") is None


def test_failed_partial_revert_is_reported_for_manual_cleanup(
    host: FakeHost, registry: ResourceRegistry, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(host.postgres, "grant_all", _refuse_grant)
    host.postgres.fail_drop = True
    database = CreateDatabase(
        ResourceDescriptor(ResourceKind.DATABASE, "demo", "postgresql://localhost:5432/demo"),
        host.toolkit,
        database="demo",
    )
    executor = PipelineExecutor(
        "demo", [Stage("database", [database])], registry, handle_signals=False
    )

    with pytest.raises(ActionError, match="permission denied"):
        executor.run()

    report = executor.report
    assert [(e.descriptor.identifier, e.status) for e in report.manual_cleanup] == [
        ("demo", RollbackStatus.FAILED)
    ]
    assert "being accessed" in (report.manual_cleanup[0].detail or "")
    assert any("partial changes left in place" in warning for warning in report.warnings)
    assert registry.load("demo") is None
