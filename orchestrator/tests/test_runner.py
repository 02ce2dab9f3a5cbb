"""End-to-end tests for a suite run against fake backends."""

import pytest

from conftest import FakeClock, FakeCloud, FakeContainers, FakeHostTarget, FakeNotifier
from orchestrator.src.config import get_settings
from orchestrator.src.models.run import StatusState
from orchestrator.src.models.suite import (
    ClusterSpec,
    ContainerSpec,
    HostSpec,
    SuiteConfig,
)
from orchestrator.src.runner import run_suite
from orchestrator.src.services.status_reporter import StatusReporter

class ScriptedContainers(FakeContainers):
    """Hands out targets that answer with the given responses."""

    def __init__(self, responses=None, **kwargs):
        super().__init__(**kwargs)
        self.responses = responses or {}

    def target(self, container_id):
        target = super().target(container_id)
        target.responses = self.responses
        return target

def _run(ctx, settings, cloud=None, containers=None, host_target=FakeHostTarget):
    notifier = FakeNotifier()
    reporter = StatusReporter(notifier, ctx.suite.context)
    returncode = run_suite(
        ctx,
        reporter,
        cloud or FakeCloud(),
        containers or FakeContainers(),
        host_target=host_target,
        clock=FakeClock(),
        echo=None,
        settings=settings,
    )
    return returncode, notifier.reports

def test_successful_container_run(make_ctx, settings):
    ctx = make_ctx(SuiteConfig(
        container=ContainerSpec(image="fedora:24"),
        tests=["make check"],
        artifacts=["test-suite.log"],
    ))
    containers = FakeContainers()

    returncode, reports = _run(ctx, settings, containers=containers)

    assert returncode == 0
    assert [r.description for r in reports] == ["Provisioning host...", "Running tests...", "All tests passed."]
    assert reports[-1].state == StatusState.SUCCESS
    assert reports[-1].url is None
    assert "make check" in containers.targets["cid1"].commands
    assert containers.removed == ["cid1"]
    assert containers.targets["cid1"].closed
    assert ctx.output_log.exists()
    assert not ctx.artifacts_dir.exists()

def test_failing_tests(make_ctx, settings):
    ctx = make_ctx(SuiteConfig(container=ContainerSpec(image="fedora:24"), tests=["make check"]))
    containers = ScriptedContainers(responses={"make check": 2})

    returncode, reports = _run(ctx, settings, containers=containers)

    assert returncode == 0
    assert reports[-1].state == StatusState.FAILURE
    assert reports[-1].description == "Test failed with rc 2."
    assert containers.removed == ["cid1"]

def test_user_error_is_reported(make_ctx, settings):
    ctx = make_ctx(SuiteConfig(container=ContainerSpec(image="nope:1"), tests=["make check"]))
    containers = FakeContainers(bad_images=["nope:1"])

    returncode, reports = _run(ctx, settings, containers=containers)

    assert returncode == 0
    assert reports[-1].state == StatusState.ERROR
    assert reports[-1].description == "Could not pull image 'nope:1'."
    assert not any(r.state == StatusState.SUCCESS for r in reports)

def test_internal_error_is_reported_and_raised(make_ctx, settings):
    def crash(timeout):
        raise RuntimeError("lost connection")

    ctx = make_ctx(SuiteConfig(container=ContainerSpec(image="fedora:24"), tests=["make check"]))
    containers = ScriptedContainers(responses={"make check": crash})
    notifier = FakeNotifier()

    with pytest.raises(RuntimeError, match="lost connection"):
        run_suite(
            ctx,
            StatusReporter(notifier, ctx.suite.context),
            FakeCloud(),
            containers,
            clock=FakeClock(),
            echo=None,
            settings=settings,
        )

    assert notifier.reports[-1].state == StatusState.ERROR
    assert notifier.reports[-1].description == "An internal error occurred."
    assert containers.removed == ["cid1"]

def test_cluster_host_failure(make_ctx, settings):
    ctx = make_ctx(SuiteConfig(
        cluster=ClusterSpec(
            hosts=[
                HostSpec(name="host1", distro="fedora/24/cloud"),
                HostSpec(name="host2", distro="bogus/1"),
                HostSpec(name="host3", distro="fedora/24/cloud"),
            ],
            container=ContainerSpec(image="fedora:24"),
        ),
        build=None,
        tests=["make check"],
    ))
    cloud = FakeCloud(bad_images=["bogus/1"])
    containers = FakeContainers()

    returncode, reports = _run(ctx, settings, cloud=cloud, containers=containers)

    assert returncode == 0
    assert reports[-1].state == StatusState.ERROR
    assert reports[-1].description.startswith("Host 'host2'")
    assert len(cloud.torn_down) == 2
    assert containers.started == []
    assert not ctx.output_log.exists()

def test_no_teardown_leaves_resources(make_ctx, settings):
    ctx = make_ctx(SuiteConfig(host=HostSpec(distro="fedora/24/cloud"), tests=["make check"]))
    settings.debug_no_teardown = True
    cloud = FakeCloud()

    returncode, reports = _run(ctx, settings, cloud=cloud)

    assert returncode == 0
    assert reports[-1].state == StatusState.SUCCESS
    assert cloud.provisioned
    assert cloud.torn_down == []

@pytest.fixture
def run_main(tmp_path, monkeypatch):
    """Run the entry point against tmp_path with a recording notifier."""
    from orchestrator.src import main as main_module

    notifier = FakeNotifier()
    monkeypatch.setattr(main_module, "install_signal_handlers", lambda: None)
    monkeypatch.setattr(main_module, "GitHubNotifier", lambda: notifier)
    monkeypatch.setenv("RHCI_CHECKOUT_DIR", str(tmp_path))
    monkeypatch.setenv("RHCI_STATE_DIR", str(tmp_path / "state"))
    get_settings.cache_clear()

    def _run():
        return main_module.main()

    yield _run, notifier
    get_settings.cache_clear()

def test_main_reports_invalid_suite_file(run_main):
    run, notifier = run_main

    assert run() == 0

    assert len(notifier.reports) == 1
    assert notifier.reports[0].state == StatusState.ERROR
    assert notifier.reports[0].context == "Red Hat CI"
    assert notifier.reports[0].description.startswith("Invalid suite file: No suite file found")

def test_main_reports_unreadable_suite_file(run_main, tmp_path):
    run, notifier = run_main
    (tmp_path / ".redhat-ci.yml").write_bytes(b"\xff\xfe\x00host")

    with pytest.raises(UnicodeDecodeError):
        run()

    assert len(notifier.reports) == 1
    assert notifier.reports[0].state == StatusState.ERROR
    assert notifier.reports[0].description == "An internal error occurred."

def test_main_reports_internal_error_once(run_main, tmp_path, monkeypatch):
    from orchestrator.src import main as main_module

    def crash(ctx, reporter, cloud, containers, settings=None):
        reporter.pending("Provisioning host...")
        raise RuntimeError("cloud API is down")

    monkeypatch.setattr(main_module, "run_suite", crash)
    (tmp_path / ".redhat-ci.yml").write_text("context: CI Tester\ncontainer: {image: 'fedora:24'}\ntests: [make]\n")
    run, notifier = run_main

    with pytest.raises(RuntimeError):
        run()

    assert [r.state for r in notifier.reports] == [StatusState.PENDING, StatusState.ERROR]
    assert all(r.context == "CI Tester" for r in notifier.reports)
