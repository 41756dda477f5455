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

import datetime
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Optional, Union

from jenkinsconf import const
from jenkinsconf.collection import ResourceCollection
from jenkinsconf.exceptions import DeclarationError, DuplicateResourceError, ResourceNotFoundError, UnknownActionError
from jenkinsconf.facts import Facts
from jenkinsconf.handler import AttributeStateChange, Commander, HandlerContext, Outcome
from jenkinsconf.http import HttpClient
from jenkinsconf.io.local import LocalIO
from jenkinsconf.notification import Notification, NotificationQueue
from jenkinsconf.resources import Id, Resource, resource
from jenkinsconf.templates import TemplateRenderer
from jenkinsconf.updatecenter import UpdateCenter

LOGGER = logging.getLogger(__name__)


@dataclass
class ActionRecord:
    """
    What happened when one action ran on one resource
    """

    resource_id: Id
    action: str
    status: Optional[const.ResourceState]
    changed: bool
    changes: dict[str, AttributeStateChange] = field(default_factory=dict)
    descriptions: list[str] = field(default_factory=list)
    notified_by: Optional[Id] = None


class RunReport:
    def __init__(self) -> None:
        self.records: list[ActionRecord] = []
        self.started = datetime.datetime.now().astimezone()
        self.finished: Optional[datetime.datetime] = None

    def add(self, record: ActionRecord) -> None:
        self.records.append(record)

    def finish(self) -> None:
        self.finished = datetime.datetime.now().astimezone()

    @property
    def changed(self) -> bool:
        return any(record.changed for record in self.records)

    @property
    def updated_resources(self) -> list[Id]:
        """The ids of the resources that changed, in the order of their first change"""
        result: list[Id] = []
        for record in self.records:
            if record.changed and record.resource_id not in result:
                result.append(record.resource_id)
        return result

    def for_resource(self, resource_id: Union[Id, str]) -> list[ActionRecord]:
        if isinstance(resource_id, str):
            resource_id = Id.parse_id(resource_id)
        return [record for record in self.records if record.resource_id == resource_id]

    @property
    def elapsed(self) -> Optional[datetime.timedelta]:
        if self.finished is None:
            return None
        return self.finished - self.started


class RunContext:
    """
    A single convergence run: the declared resources, the notification queue and the collaborators the providers use.

    :param io: The file-state applier and command runner
    :param http_client: The HTTP client used for downloads and the Jenkins API
    :param update_center: The plugin feed cache, created from :data:`~jenkinsconf.config.server_update_url` when not set
    :param facts: The facts of the platform, detected when not set
    :param renderer: The template renderer
    :param dry_run: Report the changes without making them
    :param parent: The run this is a nested run of
    """

    def __init__(
        self,
        io: Optional[LocalIO] = None,
        http_client: Optional[HttpClient] = None,
        update_center: Optional[UpdateCenter] = None,
        facts: Optional[Facts] = None,
        renderer: Optional[TemplateRenderer] = None,
        dry_run: bool = False,
        parent: Optional["RunContext"] = None,
    ) -> None:
        if io is None:
            io = LocalIO()
        if http_client is None:
            http_client = HttpClient()
        if update_center is None:
            update_center = UpdateCenter(http_client)
        if facts is None:
            facts = Facts.detect()
        if renderer is None:
            renderer = TemplateRenderer()

        self.io = io
        self.http_client = http_client
        self.update_center = update_center
        self.facts = facts
        self.renderer = renderer
        self.dry_run = dry_run
        self.parent = parent

        self.resources = ResourceCollection()
        self.notifications = NotificationQueue()
        self.report = RunReport()

    def declare(
        self,
        res: Resource,
        allow_existing: bool = False,
        anchor: Optional[Resource] = None,
        position: const.Position = const.Position.after,
    ) -> Resource:
        """
        Declare a resource in this run. The resource is validated and its :meth:`~Resource.after_created` hook runs.

        :param allow_existing: Return the resource that is already declared with the same id instead of failing, the
            declarations are merged with :meth:`~Resource.redeclare`
        :param anchor: Insert relative to this resource instead of at the insertion cursor
        :return: The declared resource
        """
        if res.id in self.resources:
            if allow_existing:
                existing = self.resources.find(res.id.entity_type, res.id.name)
                existing.redeclare(res)
                return existing
            raise DuplicateResourceError(f"Resource {res.id} is already declared", res.id)

        res.run_context = self
        res.validate()
        if anchor is None:
            self.resources.declare(res)
        else:
            self.resources.insert_relative(res, anchor, position)
        LOGGER.debug("Declared %s", res.id)
        res.after_created()
        return res

    def add(self, resource_type: str, name: str, **attributes: object) -> Resource:
        """
        Create and declare a resource of a registered type, for example ``run.add("directory", "/srv")``.
        """
        cls = resource.get_class(resource_type)
        if cls is None:
            raise DeclarationError(f"Unknown resource type {resource_type}")
        return self.declare(cls(name, **attributes))

    def lookup(self, reference: str) -> Resource:
        """
        Find a declared resource by reference. Nested runs also look in the run they are part of.
        """
        try:
            return self.resources.lookup(reference)
        except ResourceNotFoundError:
            if self.parent is None:
                raise
            return self.parent.lookup(reference)

    def _is_local(self, notification: Notification) -> bool:
        if notification.target_id not in self.resources:
            return False
        if isinstance(notification.target, Resource):
            return self.resources.lookup(str(notification.target_id)) is notification.target
        return True

    def converge(self) -> RunReport:
        """
        Run every requested action of every resource in order, followed by the delayed notifications.
        """
        LOGGER.info("Converging %d resources%s", len(self.resources), " (dry run)" if self.dry_run else "")
        for res in self.resources.each():
            for action in res.action:
                self.run_action(res, action)
        self.flush_delayed()
        self.report.finish()
        if self.parent is None:
            LOGGER.info(
                "Converged, %d of %d resources updated in %s",
                len(self.report.updated_resources),
                len(self.resources),
                self.report.elapsed,
            )
        return self.report

    def run_action(self, res: Resource, action: str, notification: Optional[Notification] = None) -> Outcome:
        """
        Run one action on one resource. The notifications of the resource are queued when it changed and the
        immediate ones are executed right away.

        :raise JenkinsConfException: The action failed and the resource does not ignore failures
        """
        if action != const.ACTION_NOTHING and action not in res.allowed_actions:
            raise UnknownActionError(
                f"Unknown action {action}, {res.resource_type} supports {', '.join(res.allowed_actions)}", res.id
            )

        handler = Commander.get_provider(self, res)
        LOGGER.debug("Running %s on %s with %s", action, res.id, type(handler).__name__)
        ctx = HandlerContext(res, action, dry_run=self.dry_run)
        outcome = handler.execute(ctx, res, action, dry_run=self.dry_run)

        self.report.add(
            ActionRecord(
                resource_id=res.id,
                action=action,
                status=ctx.status,
                changed=outcome.changed,
                changes=dict(ctx.changes),
                descriptions=list(ctx.descriptions),
                notified_by=notification.source.id if notification is not None else None,
            )
        )

        if outcome.error is not None:
            if res.ignore_failure:
                LOGGER.warning("Ignoring failure of %s on %s: %s", action, res.id, outcome.error.format_trace())
                return outcome
            raise outcome.error

        if outcome.changed:
            res.updated = True
            for notify_action, target, timing in res.notifications + ctx.notifications:
                self.notifications.notify(res, target, notify_action, timing)
            self.run_immediate()

        return outcome

    def run_immediate(self) -> None:
        while (notification := self.notifications.pop_immediate()) is not None:
            LOGGER.debug("Executing immediate notification %s", notification)
            self.run_action(notification.resolve(self.lookup), notification.action, notification)

    def flush_delayed(self) -> None:
        """
        Execute the queued delayed notifications. A nested run hands the notifications for resources it does not
        own to the run it is part of.
        """
        while (notification := self.notifications.pop_delayed()) is not None:
            if self.parent is not None and not self._is_local(notification):
                self.parent.notifications.notify(
                    notification.source, notification.target, notification.action, notification.timing
                )
                continue
            LOGGER.debug("Executing delayed notification %s", notification)
            self.run_action(notification.resolve(self.lookup), notification.action, notification)

    def nested(self) -> "RunContext":
        return RunContext(
            io=self.io,
            http_client=self.http_client,
            update_center=self.update_center,
            facts=self.facts,
            renderer=self.renderer,
            dry_run=self.dry_run,
            parent=self,
        )

    def run_inline(self, resources: Iterable[Resource]) -> bool:
        """
        Converge resources in a nested run.

        :return: True when any of the resources changed
        """
        sub = self.nested()
        for res in resources:
            sub.declare(res)
        report = sub.converge()
        self.report.records.extend(report.records)
        return report.changed


def converge(resources: Sequence[Resource], **kwargs: object) -> RunReport:
    """
    Declare the given resources in a new run and converge it.
    """
    run = RunContext(**kwargs)  # type: ignore[arg-type]
    for res in resources:
        run.declare(res)
    return run.converge()
