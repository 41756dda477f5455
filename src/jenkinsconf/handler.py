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
import traceback
from collections import defaultdict
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Union

from jenkinsconf import const
from jenkinsconf.exceptions import ConvergeError, JenkinsConfException, StateReadError
from jenkinsconf.logging import resource_logger
from jenkinsconf.resources import PurgeableResource, Resource

if TYPE_CHECKING:
    from jenkinsconf.io.local import LocalIO
    from jenkinsconf.runner import RunContext


LOGGER = logging.getLogger(__name__)


class provider(object):  # noqa: N801
    """
    A decorator that registers a new handler.

    :param resource_type: The type of the resource this handler provides an implementation for.
                          For example, ``jenkins_plugin``
    :param name: The provider variant, one of :class:`~jenkinsconf.const.ProviderKind`
    """

    def __init__(self, resource_type: str, name: Union[str, const.ProviderKind] = const.ProviderKind.generic) -> None:
        self._resource_type = resource_type
        self._name = const.ProviderKind(name)

    def __call__(self, function):
        """
        The wrapping
        """
        Commander.add_provider(self._resource_type, self._name, function)
        return function


class SkipResource(Exception):
    """
    A handler should raise this exception when a resource should be skipped. The resource will be marked as skipped
    instead of failed.
    """


class ResourcePurged(Exception):
    """
    If the :func:`~jenkinsconf.handler.CRUDHandler.read_resource` method raises this exception, the current state
    of the resource is considered purged.
    """


class InvalidOperation(Exception):
    """
    This exception is raised by the context or handler methods when an invalid operation is performed.
    """


@dataclass
class AttributeStateChange:
    current: object = None
    desired: object = None


@dataclass
class Outcome:
    """
    The result of executing one action on one resource
    """

    changed: bool
    error: Optional[JenkinsConfException] = None


@dataclass
class LogLine:
    level: int
    msg: str
    kwargs: dict[str, object] = field(default_factory=dict)


class HandlerContext(object):
    """
    Context passed to handler methods for state related "things"

    Notifications registered through :meth:`notify` are buffered and only committed to the run by the runner when
    the resource changed.
    """

    def __init__(
        self,
        resource: Resource,
        action: str = const.ACTION_NOTHING,
        dry_run: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._resource = resource
        self._action = action
        self._dry_run = dry_run
        self._cache: dict[str, Any] = {}

        self._purged = False
        self._updated = False
        self._created = False
        self._change = const.Change.nochange

        self._changes: dict[str, AttributeStateChange] = {}
        self._descriptions: list[str] = []
        self._notifications: list[tuple[str, Union[Resource, str], const.Timing]] = []

        self._status: Optional[const.ResourceState] = None
        self._logs: list[LogLine] = []
        self.logger: logging.Logger
        if logger is None:
            self.logger = resource_logger(str(resource.id))
        else:
            self.logger = logger

    @property
    def resource(self) -> Resource:
        return self._resource

    @property
    def action(self) -> str:
        return self._action

    @property
    def status(self) -> Optional[const.ResourceState]:
        return self._status

    @property
    def logs(self) -> list[LogLine]:
        return self._logs

    def set_status(self, status: const.ResourceState) -> None:
        """
        Set the status of the handler operation.
        """
        self._status = status

    def is_dry_run(self) -> bool:
        """
        Is this a dryrun?
        """
        return self._dry_run

    def get(self, name: str) -> Any:
        return self._cache[name]

    def contains(self, key: str) -> bool:
        return key in self._cache

    def set(self, name: str, value: Any) -> None:
        self._cache[name] = value

    def _set_change(self, change: const.Change) -> None:
        if self._change is not const.Change.nochange and self._change is not change:
            raise InvalidOperation(f"Unable to set {change} operation, {self._change} already set.")
        self._change = change

    def set_created(self) -> None:
        self._set_change(const.Change.created)
        self._created = True

    def set_purged(self) -> None:
        self._set_change(const.Change.purged)
        self._purged = True

    def set_updated(self) -> None:
        if self._change is not const.Change.nochange:
            # created or purged already implies the resource changed
            return
        self._set_change(const.Change.updated)
        self._updated = True

    @property
    def changed(self) -> bool:
        return self._created or self._updated or self._purged

    @property
    def change(self) -> const.Change:
        return self._change

    def add_change(self, name: str, desired: object, current: object = None) -> None:
        """
        Report a change of a field. This field is added to the set of updated fields

        :param name: The name of the field that was updated
        :param desired: The desired value to which the field was updated (or should be updated)
        :param current: The value of the field before it was updated
        """
        self._changes[name] = AttributeStateChange(current=current, desired=desired)

    def update_changes(self, changes: dict[str, dict[str, object]]) -> None:
        """
        Update the changes list with changes

        :param changes: This should be a dict with a value a dict containing "current" and "desired" keys
        """
        for attribute, change in changes.items():
            self._changes[attribute] = AttributeStateChange(current=change.get("current"), desired=change.get("desired"))

    @property
    def changes(self) -> dict[str, AttributeStateChange]:
        return self._changes

    def add_description(self, description: str) -> None:
        self._descriptions.append(description)

    @property
    def descriptions(self) -> list[str]:
        """The human readable list of the modifications made (or that would be made in a dry run)"""
        return self._descriptions

    def notify(
        self, action: str, target: Union[Resource, str], timing: Union[const.Timing, str] = const.Timing.delayed
    ) -> None:
        """
        Request action on target. The notification is only sent when this resource reports a change.
        """
        self._notifications.append((action, target, const.Timing(timing)))

    @property
    def notifications(self) -> list[tuple[str, Union[Resource, str], const.Timing]]:
        return self._notifications

    def log_msg(self, level: int, msg: str, args: Sequence[object], kwargs: dict[str, object]) -> None:
        if len(args) > 0:
            raise Exception("Args not supported")
        exc_info = kwargs.pop("exc_info", False)
        if exc_info:
            kwargs["traceback"] = traceback.format_exc()

        formatted = msg % kwargs if kwargs else msg
        self.logger.log(level, "resource %s: %s", self._resource.id, formatted, exc_info=exc_info)
        self._logs.append(LogLine(level, formatted, kwargs))

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        """
        Log 'msg % kwargs' with severity 'DEBUG'.

        ``ctx.debug("Reading %(path)s", path=path)``
        """
        self.log_msg(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        """
        Log 'msg % kwargs' with severity 'INFO'.
        """
        self.log_msg(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        """
        Log 'msg % kwargs' with severity 'WARNING'.
        """
        self.log_msg(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        """
        Log 'msg % kwargs' with severity 'ERROR'.

        To pass exception information, use the keyword argument exc_info with a true value.
        """
        self.log_msg(logging.ERROR, msg, args, kwargs)

    def exception(self, msg: str, *args: object, exc_info: bool = True, **kwargs: object) -> None:
        """
        Convenience method for logging an ERROR with exception information.
        """
        self.error(msg, *args, exc_info=exc_info, **kwargs)


class ResourceHandler(object):
    """
    A baseclass for classes that handle resources. New handler are registered with the
    :func:`~jenkinsconf.handler.provider` decorator.

    A handler reads the current state in :meth:`load_current_state` and converges it in :meth:`converge`, which
    dispatches to a method named ``action_<action>``. The implementation of a handler should use the ``self._io``
    instance to execute io operations and :meth:`converge_by` to wrap every mutation so dry runs are respected.

    :param run_context: The run this handler executes in
    :param io: The io object to use.
    """

    def __init__(self, run_context: "RunContext", io: Optional["LocalIO"] = None) -> None:
        self.run_context = run_context
        if io is None:
            io = run_context.io
        self._io = io

    def available(self, resource: Resource) -> bool:
        """
        Returns true if this handler is available for the given resource

        :param resource: Is this handler available for the given resource?
        :return: Available or not?
        """
        return True

    def pre(self, ctx: HandlerContext, resource: Resource) -> None:
        """
        Method executed before a handler operation is executed.
        """

    def post(self, ctx: HandlerContext, resource: Resource) -> None:
        """
        Method executed after a handler operation.
        """

    def _diff(self, current: Resource, desired: Resource) -> dict[str, dict[str, Any]]:
        """
        Calculate the diff between the current and desired resource state. Attributes without a desired value are
        not compared.

        :param current: The current state of the resource
        :param desired: The desired state of the resource
        :return: A dict with key the name of the field and value another dict with "current" and "desired" as keys for
                 fields that require changes.
        """
        changes = {}

        # check attributes
        for field_def in desired.__class__.fields:
            desired_value = getattr(desired, field_def.name)
            if desired_value is None:
                continue
            current_value = getattr(current, field_def.name)
            if current_value != desired_value:
                changes[field_def.name] = {"current": current_value, "desired": desired_value}

        return changes

    def load_current_state(self, ctx: HandlerContext, resource: Resource) -> object:
        """
        Inspect the system and return the current state of the resource. This method must not change anything.

        :param ctx: Context object to report logs to.
        :param resource: The desired state.
        :return: A representation of the current state, passed to the action method
        """
        return None

    def converge(self, ctx: HandlerContext, resource: Resource, current: object, action: str) -> None:
        """
        Run the given action to bring the system in the desired state. Report changes on ctx.
        """
        if action == const.ACTION_NOTHING:
            return
        method: Optional[Callable[[HandlerContext, Resource, object], None]] = getattr(self, f"action_{action}", None)
        if method is None:
            raise ConvergeError(f"{type(self).__name__} does not implement action {action}", resource.id)
        method(ctx, resource, current)

    def converge_by(self, ctx: HandlerContext, description: str, func: Optional[Callable[[], object]] = None) -> None:
        """
        Make a modification to the system and mark the resource as updated. In a dry run the modification is only
        reported.

        :param description: What is changed, for humans
        :param func: Makes the modification
        """
        ctx.add_description(description)
        if ctx.is_dry_run():
            ctx.info("Would %(description)s", description=description)
        else:
            ctx.info("%(description)s", description=description)
            if func is not None:
                func()
        ctx.set_updated()

    def run_inline(self, ctx: HandlerContext, resources: Sequence[Resource]) -> bool:
        """
        Converge resources in a nested run. The resource of ctx is marked updated when any of them changed.

        :return: True when one of the resources changed
        """
        changed = self.run_context.run_inline(resources)
        if changed:
            ctx.set_updated()
        return changed

    def execute(self, ctx: HandlerContext, resource: Resource, action: str, dry_run: bool = False) -> Outcome:
        """
        Read the current state and converge the given resource for one action. Most handlers will not override this
        method and will only override :meth:`load_current_state` and the action methods.

        :param ctx: Context object to report changes and logs to.
        :param resource: The resource to converge.
        :param action: The action to run.
        :param dry_run: True will only determine the required changes but will not execute them.
        :return: The outcome, with the error that aborted the action, if any
        """
        ctx.set_status(const.ResourceState.deploying)
        try:
            self.pre(ctx, resource)

            try:
                current = self.load_current_state(ctx, resource)
            except (JenkinsConfException, SkipResource):
                raise
            except Exception as e:
                raise StateReadError(f"Failed to read the current state ({e.__class__.__name__}: {e})", resource.id, cause=e)

            try:
                self.converge(ctx, resource, current, action)
            except (JenkinsConfException, SkipResource):
                raise
            except Exception as e:
                raise ConvergeError(f"Failed to {action} ({e.__class__.__name__}: {e})", resource.id, cause=e)

            ctx.set_status(const.ResourceState.dry if dry_run else const.ResourceState.deployed)
        except SkipResource as e:
            ctx.set_status(const.ResourceState.skipped)
            ctx.warning(msg="Resource %(resource_id)s was skipped: %(reason)s", resource_id=resource.id, reason=e.args)

        except JenkinsConfException as e:
            ctx.set_status(const.ResourceState.failed)
            if e.resource_id is None:
                e.resource_id = resource.id
            ctx.exception(
                "An error occurred during %(action)s of %(resource_id)s (exception: %(exception)s)",
                action=action,
                resource_id=resource.id,
                exception=f"{e.__class__.__name__}('{e.get_message()}')",
            )
            return Outcome(ctx.changed, e)
        finally:
            self.post(ctx, resource)

        return Outcome(ctx.changed)


class CRUDHandler(ResourceHandler):
    """
    This handler base class requires CRUD methods to be implemented: create, read, update and delete. Such a handler
    only works on purgeable resources, with the actions ``create`` and ``delete``.
    """

    def read_resource(self, ctx: HandlerContext, resource: PurgeableResource) -> None:
        """
        This method reads the current state of the resource. It provides a copy of the resource that should be deployed,
        the method implementation should modify the attributes of this resource to the current state.

        :param ctx: Context can be used to pass value discovered in the read method to the CUD methods. For example, the
                   id used in API calls
        :param resource: A clone of the desired resource state. The read method need to set values on this object.
        :raise SkipResource: Raise this exception when the handler should skip this resource
        :raise ResourcePurged: Raise this exception when the resource does not exist yet.
        """

    def create_resource(self, ctx: HandlerContext, resource: PurgeableResource) -> None:
        """
        This method is called by the handler when the resource should be created.

        :param ctx: Context can be used to get values discovered in the read method.
        :param resource: The desired resource state.
        """

    def delete_resource(self, ctx: HandlerContext, resource: PurgeableResource) -> None:
        """
        This method is called by the handler when the resource should be deleted.

        :param ctx: Context can be used to get values discovered in the read method.
        :param resource: The desired resource state.
        """

    def update_resource(self, ctx: HandlerContext, changes: dict[str, dict[str, Any]], resource: PurgeableResource) -> None:
        """
        This method is called by the handler when the resource should be updated.

        :param ctx: Context can be used to get values discovered in the read method.
        :param changes: A map of resource attributes that should be changed. Each value is a dict with the current and
                        the desired value.
        :param resource: The desired resource state.
        """

    def calculate_diff(self, ctx: HandlerContext, current: Resource, desired: Resource) -> dict[str, dict[str, Any]]:
        """
        Calculate the diff between the current and desired resource state.

        :return: A dict with key the name of the field and value another dict with "current" and "desired" as keys for
                 fields that require changes.
        """
        return self._diff(current, desired)

    def load_current_state(self, ctx: HandlerContext, resource: Resource) -> Optional[Resource]:
        """
        Returns a clone of the resource with the current state filled in, or None when it does not exist.
        """
        assert isinstance(resource, PurgeableResource)
        current = resource.clone()
        try:
            ctx.debug("Calling read_resource")
            self.read_resource(ctx, current)
        except ResourcePurged:
            return None
        return current

    def action_create(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, PurgeableResource)
        if current is None:
            ctx.add_change("purged", desired=False, current=True)
            ctx.set_created()
            self.converge_by(ctx, f"create {resource.id}", lambda: self.create_resource(ctx, resource))
            return

        assert isinstance(current, Resource)
        changes = self.calculate_diff(ctx, current, resource)
        if changes:
            ctx.update_changes(changes)
            ctx.debug("Calling update_resource", changes=changes)
            self.converge_by(
                ctx,
                f"update {', '.join(sorted(changes))} of {resource.id}",
                lambda: self.update_resource(ctx, changes, resource),
            )

    def action_delete(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, PurgeableResource)
        if current is None:
            return
        ctx.add_change("purged", desired=True, current=False)
        ctx.set_purged()
        self.converge_by(ctx, f"delete {resource.id}", lambda: self.delete_resource(ctx, resource))


class Commander(object):
    """
    The registry of handlers, per resource type and provider variant
    """

    __command_functions: dict[str, dict[const.ProviderKind, type[ResourceHandler]]] = defaultdict(dict)

    @classmethod
    def get_handlers(cls) -> dict[str, dict[const.ProviderKind, type[ResourceHandler]]]:
        return cls.__command_functions

    @classmethod
    def get_provider(cls, run_context: "RunContext", resource: Resource) -> ResourceHandler:
        """
        Return a provider to handle the given resource. An explicit provider on the resource is used as is, otherwise
        the one non-generic provider that is available for the resource, otherwise the generic one.
        """
        resource_type = resource.id.entity_type
        variants = cls.__command_functions.get(resource_type, {})

        if resource.provider is not None:
            if resource.provider not in variants:
                raise ConvergeError(
                    f"No {resource.provider.value} provider registered for resource of type {resource_type}", resource.id
                )
            return variants[resource.provider](run_context)

        available = []
        for kind, handler_class in variants.items():
            if kind is const.ProviderKind.generic:
                continue
            h = handler_class(run_context)
            if h.available(resource):
                available.append(h)

        if len(available) > 1:
            raise ConvergeError("More than one handler selected for resource %s" % resource.id, resource.id)
        elif len(available) == 1:
            return available[0]

        if const.ProviderKind.generic in variants:
            return variants[const.ProviderKind.generic](run_context)

        raise ConvergeError("No resource handler registered for resource of type %s" % resource_type, resource.id)

    @classmethod
    def add_provider(cls, resource: str, name: const.ProviderKind, provider: type[ResourceHandler]) -> None:
        """
        Register a new provider

        :param resource: the name of the resource this handler applies to
        :param name: the variant of the handler
        :param provider: the handler class
        """
        if resource in cls.__command_functions and name in cls.__command_functions[resource]:
            del cls.__command_functions[resource][name]

        cls.__command_functions[resource][name] = provider

    @classmethod
    def get_providers(cls) -> Iterator[tuple[str, type[ResourceHandler]]]:
        """Return an iterator over resource type, handler definition"""
        for resource_type, handler_map in cls.__command_functions.items():
            for handler_class in handler_map.values():
                yield (resource_type, handler_class)

    @classmethod
    def get_provider_class(cls, resource_type: str, name: const.ProviderKind) -> Optional[type[ResourceHandler]]:
        """
        Return the class of the handler for the given type and with the given name
        """
        return cls.__command_functions.get(resource_type, {}).get(name)
