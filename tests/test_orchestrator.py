import pytest

from hotreload.dependencies import DependencyGraph
from hotreload.events import RestartCompleted, RestartFailed, ServiceRestartFailed, ServiceRestarted
from hotreload.models import ConfigChange
from hotreload.restarts import RestartOrchestrator, UnknownStrategy, select_strategy

from conftest import PROJECT, FakeRuntime


def _change(severity, services, path="/app/config/.env"):
    return ConfigChange(path, "changed", severity, tuple(services))


@pytest.mark.parametrize(
    "severity,strategy",
    [("critical", "full"), ("moderate", "selective"), ("minor", "reload"), ("bogus", "reload")],
)
def test_strategy_from_severity(severity, strategy):
    assert select_strategy(severity) == strategy


def test_critical_change_restarts_everything_in_dependency_order(orchestrator, runtime, sink):
    results = orchestrator.handle_config_change(_change("critical", ["clash"]))

    assert [r.service for r in results] == ["web-ui", "nginx", "clash"]
    assert all(r.success for r in results)
    assert [c[1] for c in runtime.ops("start")] == [runtime.name(s) for s in ("web-ui", "nginx", "clash")]
    assert runtime.ops("stop")[0] == ("stop", runtime.name("web-ui"), 10)
    assert sink.kinds()[0] == "restartStarted"
    assert sink.kinds()[-1] == "restartCompleted"
    assert sink.events[-1].failed_count == 0


def test_each_service_finishes_before_the_next_begins(orchestrator, runtime):
    orchestrator.handle_config_change(_change("critical", []))
    names = [c[1] for c in runtime.ops("stop", "start")]
    assert names == [
        runtime.name("web-ui"),
        runtime.name("web-ui"),
        runtime.name("nginx"),
        runtime.name("nginx"),
        runtime.name("clash"),
        runtime.name("clash"),
    ]


def test_selective_restarts_only_affected_services(orchestrator, runtime):
    results = orchestrator.handle_config_change(_change("moderate", ["clash", "nginx"]))
    assert [r.service for r in results] == ["nginx", "clash"]
    assert runtime.name("web-ui") not in [c[1] for c in runtime.calls]


def test_failure_is_isolated_to_one_service(orchestrator, runtime, sink, logs):
    runtime.missing.add("nginx")
    results = orchestrator.handle_config_change(_change("moderate", ["clash", "nginx"]))

    assert [(r.service, r.success) for r in results] == [("nginx", False), ("clash", True)]
    assert "not found" in results[0].error
    failed = [e for e in sink.events if isinstance(e, ServiceRestartFailed)]
    assert [e.service for e in failed] == ["nginx"]
    completed = sink.events[-1]
    assert isinstance(completed, RestartCompleted)
    assert completed.failed_count == 1
    assert any("Pre-restart check failed" in m for m in logs.levels("WARN"))


def test_failure_hook_is_invoked(runtime, sink, clock, logs):
    seen = []
    orch = RestartOrchestrator(
        runtime,
        graph=DependencyGraph({"nginx": []}),
        sink=sink,
        project_name=PROJECT,
        on_failure=lambda svc, err: seen.append((svc, type(err).__name__)),
        clock=clock,
        sleep=clock.sleep,
        log=logs,
    )
    runtime.missing.add("nginx")
    orch.handle_config_change(_change("moderate", ["nginx"]))
    assert seen == [("nginx", "ContainerNotFound")]


def test_stop_timeout_fails_the_service(orchestrator, runtime, clock):
    runtime.stuck.add("nginx")
    results = orchestrator.handle_config_change(_change("moderate", ["nginx"]))

    assert results[0].success is False
    assert "stop timeout" in results[0].error
    assert results[0].duration_ms == pytest.approx(30_000)
    assert runtime.ops("start") == []


def test_ready_timeout_fails_the_service(orchestrator, runtime):
    runtime.never_ready.add("nginx")
    results = orchestrator.handle_config_change(_change("moderate", ["nginx", "clash"]))

    assert [(r.service, r.success) for r in results] == [("nginx", False), ("clash", True)]
    assert "ready timeout" in results[0].error


def test_container_without_healthcheck_is_ready_after_settle(orchestrator, runtime, clock):
    runtime.no_health.add("nginx")
    results = orchestrator.handle_config_change(_change("moderate", ["nginx"]))
    assert results[0].success
    # one stop poll sleep is not needed (stop is immediate); settle is 2s
    assert clock.sleeps == [2.0]
    assert results[0].duration_ms == pytest.approx(2000)


def test_stopped_container_is_started_without_stop(orchestrator, runtime, logs):
    runtime.running[runtime.name("nginx")] = False
    results = orchestrator.handle_config_change(_change("moderate", ["nginx"]))
    assert results[0].success
    assert runtime.ops("stop") == []
    assert runtime.ops("start") == [("start", runtime.name("nginx"))]
    assert any("not running" in m for m in logs.levels("WARN"))


def test_container_vanishing_while_stopping_counts_as_stopped(orchestrator, runtime):
    runtime.vanish_once.add("nginx")
    results = orchestrator.handle_config_change(_change("moderate", ["nginx"]))
    assert results[0].success
    assert runtime.ops("start") == [("start", runtime.name("nginx"))]


def test_restart_events_per_service(orchestrator, sink):
    orchestrator.handle_config_change(_change("moderate", ["nginx"]))
    assert sink.kinds() == ["restartStarted", "serviceRestarting", "serviceRestarted", "restartCompleted"]
    restarted = sink.events[2]
    assert isinstance(restarted, ServiceRestarted)
    assert restarted.status == "healthy"


def test_reload_only_signals_each_service(sink, clock, logs):
    runtime = FakeRuntime(["templates-consumer"])
    orch = RestartOrchestrator(runtime, sink=sink, project_name=PROJECT, clock=clock, sleep=clock.sleep, log=logs)
    results = orch.handle_config_change(_change("minor", ["templates-consumer"]))

    assert runtime.ops("stop", "start") == []
    assert runtime.ops("signal") == [("signal", runtime.name("templates-consumer"), "SIGHUP")]
    assert [(r.service, r.success) for r in results] == [("templates-consumer", True)]


def test_reload_failures_do_not_abort_the_batch(sink, clock, logs):
    runtime = FakeRuntime(["clash", "nginx"])
    runtime.bad_signal.add("clash")
    orch = RestartOrchestrator(runtime, sink=sink, project_name=PROJECT, clock=clock, sleep=clock.sleep, log=logs)
    results = orch.handle_config_change(_change("minor", ["clash", "nginx", "ghost"]))

    assert [(r.service, r.success) for r in results] == [("clash", False), ("nginx", True), ("ghost", False)]
    assert "reload signal" in results[0].error
    assert sink.events[-1].failed_count == 2


def test_empty_affected_set_is_an_empty_batch(orchestrator, runtime, sink):
    assert orchestrator.handle_config_change(_change("minor", [])) == []
    assert orchestrator.handle_config_change(_change("moderate", [])) == []
    assert runtime.calls == []
    assert sink.kinds().count("restartCompleted") == 2


def test_unknown_strategy_rejects_the_whole_call(orchestrator, runtime, sink):
    with pytest.raises(UnknownStrategy):
        orchestrator.handle_config_change(_change("moderate", ["nginx"]), strategy="rolling")
    assert isinstance(sink.events[-1], RestartFailed)
    assert "rolling" in sink.events[-1].error
    assert runtime.calls == []


def test_replaced_graph_applies_to_next_batch(orchestrator, runtime):
    orchestrator.graph.replace({"web-ui": [], "api": ["web-ui"]})
    runtime.running[runtime.name("api")] = True
    results = orchestrator.handle_config_change(_change("critical", []))
    assert [r.service for r in results] == ["web-ui", "api"]
