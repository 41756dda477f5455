"""
    Copyright 2026 Inmanta

    Licensed under the Apache License, Version 2.0 (the "License");
    you may not use this file except in compliance with the License.
    You may obtain a copy of the License at

        http://www.apache.org/licenses/LICENSE-2.0

    Unless required by applicable law or agreed to in writing, software
    distributed under the License is distributed on an "AS IS" BASIS,
    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
    See the License for the specific language governing permissions and
    limitations under the License.

    Contact: code@inmanta.com
"""
import logging

import pytest

from jenkinsconf import const
from jenkinsconf.exceptions import (
    ConvergeError,
    DeclarationError,
    DuplicateResourceError,
    MissingRequiredAttributeError,
    ResourceReferenceError,
    UnknownActionError,
)
from jenkinsconf.handler import HandlerContext, ResourceHandler, provider
from jenkinsconf.jenkins.plugin import Plugin
from jenkinsconf.resources import Field, Resource, resource
from jenkinsconf.runner import converge
from utils import actions_of, changed_ids, log_contains

STATE: dict[str, str] = {}
EXECUTED: list[tuple[str, str]] = []


@resource("test_value")
class Value(Resource):
    fields = (
        Field("value", str, default="on"),
        Field("inner", list, default=[]),
    )
    allowed_actions = ("set", "ping", "fail", "wrap")
    default_action = "set"


@provider("test_value", name=const.ProviderKind.generic)
class ValueHandler(ResourceHandler):
    def load_current_state(self, ctx: HandlerContext, resource: Resource) -> object:
        return STATE.get(resource.name)

    def action_set(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        EXECUTED.append((resource.name, "set"))
        if current != resource.value:
            ctx.add_change("value", desired=resource.value, current=current)
            self.converge_by(ctx, f"set {resource.name}", lambda: STATE.__setitem__(resource.name, resource.value))

    def action_ping(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        EXECUTED.append((resource.name, "ping"))
        self.converge_by(ctx, f"ping {resource.name}")

    def action_fail(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        EXECUTED.append((resource.name, "fail"))
        raise ConvergeError("boom", resource.id)

    def action_wrap(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        EXECUTED.append((resource.name, "wrap"))
        self.run_inline(ctx, resource.inner)


@pytest.fixture(autouse=True)
def clean_state():
    STATE.clear()
    EXECUTED.clear()


def test_idempotence(new_run):
    run = new_run()
    run.declare(Value("a", value="1"))
    run.declare(Value("b", value="2"))
    report = run.converge()
    assert report.changed
    assert changed_ids(report) == ["test_value[a]", "test_value[b]"]
    assert STATE == {"a": "1", "b": "2"}
    assert report.elapsed is not None

    run = new_run()
    run.declare(Value("a", value="1"))
    run.declare(Value("b", value="2"))
    report = run.converge()
    assert not report.changed
    assert actions_of(report, "test_value[a]") == [("set", False)]


def test_no_change_no_notification(run_context):
    STATE["source"] = "on"
    source = run_context.declare(Value("source"))
    target = run_context.declare(Value("target", action="nothing"))
    source.notifies("ping", target)
    source.notifies("ping", target, "immediate")

    report = run_context.converge()

    assert not report.changed
    assert ("target", "ping") not in EXECUTED
    assert not source.updated


def test_delayed_notifications_run_once_after_the_walk(run_context):
    target = run_context.declare(Value("target", action="nothing"))
    for name in ("s1", "s2", "s3"):
        source = run_context.declare(Value(name))
        source.notifies("ping", target)
    run_context.declare(Value("last"))

    report = run_context.converge()

    assert EXECUTED == [("s1", "set"), ("s2", "set"), ("s3", "set"), ("last", "set"), ("target", "ping")]
    ping = report.for_resource("test_value[target]")[-1]
    assert ping.action == "ping"
    assert str(ping.notified_by) == "test_value[s1]"


def test_delayed_notifications_in_registration_order(run_context):
    first = run_context.declare(Value("first", action="nothing"))
    second = run_context.declare(Value("second", action="nothing"))
    run_context.declare(Value("a")).notifies("ping", second)
    run_context.declare(Value("b")).notifies("ping", first)
    run_context.declare(Value("c")).notifies("ping", second)

    run_context.converge()

    assert EXECUTED[-2:] == [("second", "ping"), ("first", "ping")]


def test_immediate_notification(run_context):
    target = run_context.declare(Value("target", action="nothing"))
    run_context.declare(Value("source")).notifies("ping", target, const.Timing.immediate)
    run_context.declare(Value("next"))

    run_context.converge()

    assert EXECUTED == [("source", "set"), ("target", "ping"), ("next", "set")]


def test_notification_by_reference(run_context):
    run_context.declare(Value("source")).notifies("ping", "test_value[target]")
    # declared after the source, resolved when the notification runs
    run_context.declare(Value("target", action="nothing"))

    run_context.converge()

    assert EXECUTED[-1] == ("target", "ping")


def test_dangling_reference_fails_at_flush(run_context):
    run_context.declare(Value("source")).notifies("ping", "test_value[missing]")
    run_context.declare(Value("other"))

    with pytest.raises(ResourceReferenceError) as e:
        run_context.converge()

    assert e.value.resource_id == run_context.resources.lookup("test_value[source]").id
    # the walk completed before the reference was resolved
    assert EXECUTED == [("source", "set"), ("other", "set")]


def test_undeclared_target_resource_fails_at_flush(run_context):
    never_declared = Value("ghost", action="nothing")
    run_context.declare(Value("source")).notifies("ping", never_declared)

    with pytest.raises(ResourceReferenceError, match="test_value\\[ghost\\], which is not declared"):
        run_context.converge()

    assert ("ghost", "ping") not in EXECUTED


def test_target_resource_of_another_run_fails_at_flush(run_context, new_run):
    elsewhere = new_run().declare(Value("target", action="nothing"))
    run_context.declare(Value("target", action="nothing"))
    run_context.declare(Value("source")).notifies("ping", elsewhere)

    with pytest.raises(ResourceReferenceError):
        run_context.converge()

    assert ("target", "ping") not in EXECUTED


def test_failure_aborts_the_run(run_context):
    run_context.declare(Value("a"))
    run_context.declare(Value("broken", action="fail"))
    run_context.declare(Value("c"))

    with pytest.raises(ConvergeError) as e:
        run_context.converge()

    assert str(e.value.resource_id) == "test_value[broken]"
    assert EXECUTED == [("a", "set"), ("broken", "fail")]
    assert "c" not in STATE


def test_ignore_failure(run_context, caplog):
    run_context.declare(Value("broken", action="fail", ignore_failure=True))
    run_context.declare(Value("c"))

    report = run_context.converge()

    assert EXECUTED == [("broken", "fail"), ("c", "set")]
    assert report.for_resource("test_value[broken]")[0].status is const.ResourceState.failed
    log_contains(caplog, "jenkinsconf.runner", logging.WARNING, "Ignoring failure of fail on test_value[broken]")


def test_fail_fast_declaration(run_context):
    run_context.declare(Value("a"))

    # a plugin can not be declared without the server it belongs to
    with pytest.raises(MissingRequiredAttributeError) as e:
        run_context.declare(Plugin("git"))

    assert "plugins_path" in str(e.value)
    assert EXECUTED == []
    assert "jenkins_plugin[git]" not in run_context.resources


def test_declaration_errors(run_context):
    run_context.declare(Value("a"))
    with pytest.raises(DuplicateResourceError):
        run_context.declare(Value("a"))
    assert run_context.declare(Value("a"), allow_existing=True).value == "on"

    with pytest.raises(DeclarationError):
        run_context.add("no_such_type", "x")

    added = run_context.add("test_value", "b", value="2")
    assert isinstance(added, Value)
    assert run_context.lookup("test_value[b]") is added


def test_unknown_action_at_run_time(run_context):
    res = run_context.declare(Value("a"))
    with pytest.raises(UnknownActionError):
        run_context.run_action(res, "explode")


def test_multiple_actions(run_context):
    run_context.declare(Value("a", action=["set", "ping"]))
    report = run_context.converge()
    assert actions_of(report, "test_value[a]") == [("set", True), ("ping", True)]


def test_dry_run(new_run):
    run = new_run(dry_run=True)
    target = run.declare(Value("target", action="nothing"))
    run.declare(Value("a")).notifies("ping", target)

    report = run.converge()

    assert STATE == {}
    record = report.for_resource("test_value[a]")[0]
    assert record.status is const.ResourceState.dry
    assert record.changed
    assert record.descriptions == ["set a"]
    assert record.changes["value"].desired == "on"
    # notifications are followed in a dry run as well
    assert ("target", "ping") in EXECUTED


def test_nested_run_forwards_notifications_for_outer_resources(run_context):
    outer = run_context.declare(Value("outer", action="nothing"))
    inner_target = Value("inner-target", action="nothing")
    first = Value("inner1")
    first.notifies("ping", outer)
    first.notifies("ping", inner_target)
    second = Value("inner2")
    second.notifies("ping", outer)
    run_context.declare(Value("wrapper", action="wrap", inner=[first, second, inner_target]))
    run_context.declare(Value("after"))

    report = run_context.converge()

    assert EXECUTED == [
        ("wrapper", "wrap"),
        ("inner1", "set"),
        ("inner2", "set"),
        # local to the nested run, flushed at its end
        ("inner-target", "ping"),
        ("after", "set"),
        ("outer", "ping"),
    ]
    assert actions_of(report, "test_value[wrapper]") == [("wrap", True)]
    assert actions_of(report, "test_value[outer]") == [("nothing", False), ("ping", True)]


def test_nested_run_without_changes(run_context):
    STATE["inner"] = "on"
    run_context.declare(Value("wrapper", action="wrap", inner=[Value("inner")]))
    report = run_context.converge()
    assert actions_of(report, "test_value[wrapper]") == [("wrap", False)]


def test_converge_helper(fake_io, http_client, update_center, facts):
    report = converge(
        [Value("a"), Value("b", value="x")], io=fake_io, http_client=http_client, update_center=update_center, facts=facts
    )
    assert changed_ids(report) == ["test_value[a]", "test_value[b]"]
    assert STATE == {"a": "on", "b": "x"}
