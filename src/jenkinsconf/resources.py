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

import copy
import logging
import re
import weakref
from collections.abc import Callable, Iterator, Sequence
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, Optional, TypeVar, Union

from jenkinsconf import const
from jenkinsconf.exceptions import (
    ConflictingAttributesError,
    DeclarationError,
    FrozenAttributeError,
    InvalidAttributeError,
    MissingRequiredAttributeError,
    UnknownActionError,
    UnknownSubResourceError,
)

if TYPE_CHECKING:
    from jenkinsconf.config import Option
    from jenkinsconf.runner import RunContext

LOGGER = logging.getLogger(__name__)

PARSE_ID_REGEX = re.compile(r"^(?P<type>[\w:]+)\[(?P<name>.*)\]$")

R = TypeVar("R", bound="Resource")

# Number of lazy defaults that are being resolved right now
_resolving: ContextVar[int] = ContextVar("_resolving", default=0)


class resource:  # noqa: N801
    """
    A decorator that registers a new resource type. The name is used in resource ids and to select providers.

    :param name: The name of the resource type, for example ``jenkins_plugin``
    """

    _resources: dict[str, type["Resource"]] = {}

    def __init__(self, name: str) -> None:
        self._cls_name = name

    def __call__(self, cls: type[R]) -> type[R]:
        """
        The wrapping
        """
        if self._cls_name in resource._resources:
            LOGGER.info("Reloading resource type %s" % self._cls_name)
            del resource._resources[self._cls_name]

        cls.resource_type = self._cls_name
        resource._resources[self._cls_name] = cls
        return cls

    @classmethod
    def get_class(cls, name: str) -> Optional[type["Resource"]]:
        """
        Get the class definition for the given resource type.
        """
        return cls._resources.get(name)

    @classmethod
    def get_resources(cls) -> Iterator[tuple[str, type["Resource"]]]:
        """Return an iterator over resource type, resource definition"""
        return iter(cls._resources.items())


class subresource:  # noqa: N801
    """
    A decorator that makes a resource type available as a child keyword of a parent resource type.

    :param keyword: The keyword used in :meth:`Resource.child`
    :param parent_type: The resource type of the parent, ``None`` to make the keyword available on every parent
    """

    _keywords: dict[tuple[Optional[str], str], type["Resource"]] = {}

    def __init__(self, keyword: str, parent_type: Optional[str] = None) -> None:
        self._keyword = keyword
        self._parent_type = parent_type

    def __call__(self, cls: type[R]) -> type[R]:
        subresource._keywords[(self._parent_type, self._keyword)] = cls
        return cls

    @classmethod
    def get_class(cls, parent_type: str, keyword: str) -> Optional[type["Resource"]]:
        if (parent_type, keyword) in cls._keywords:
            return cls._keywords[(parent_type, keyword)]
        return cls._keywords.get((None, keyword))

    @classmethod
    def get_keywords(cls, parent_type: str) -> list[str]:
        return sorted({keyword for (ptype, keyword) in cls._keywords if ptype in (None, parent_type)})


class lazy:  # noqa: N801
    """
    A default value that is computed from the resource on first read and memoized for the lifetime of the resource.

    :param func: Called with the resource as its only argument
    """

    def __init__(self, func: Callable[["Resource"], object]) -> None:
        self.func = func

    def __call__(self, res: "Resource") -> object:
        return self.func(res)


def from_config(option: "Option[Any]") -> lazy:
    """
    A lazy default that reads a configuration option when the attribute is first used.
    """
    return lazy(lambda res: option.get())


def from_parent(attribute: str, fallback: object = None) -> lazy:
    """
    A lazy default that reads an attribute of the parent resource.
    """

    def get(res: "Resource") -> object:
        parent = res.parent
        if parent is None:
            return fallback() if callable(fallback) else fallback
        return getattr(parent, attribute)

    return lazy(get)


class Field:
    """
    The definition of a single attribute of a resource type.

    :param name: The name of the attribute
    :param kind: The type or tuple of types a value must be an instance of. ``None`` is always accepted and means unset.
    :param default: A static default or a :class:`lazy` default
    :param required: The attribute must have a value once the resource is declared
    :param choices: The values that are accepted, if set
    """

    def __init__(
        self,
        name: str,
        kind: Union[type, tuple[type, ...]] = str,
        default: object = None,
        required: bool = False,
        choices: Optional[Sequence[object]] = None,
    ) -> None:
        self.name = name
        self.kind = kind
        self.default = default
        self.required = required
        self.choices = choices

    def check(self, owner: "Resource", value: object) -> object:
        if value is None:
            return value
        # bool is a subclass of int
        if isinstance(value, bool) and self.kind in (int, (int,)):
            raise InvalidAttributeError(f"{self.name} should be of type int, got {value!r}", owner.id)
        if not isinstance(value, self.kind):
            raise InvalidAttributeError(f"{self.name} should be of type {self._kind_name()}, got {value!r}", owner.id)
        if self.choices is not None and value not in self.choices:
            raise InvalidAttributeError(
                f"{self.name} should be one of {', '.join(repr(x) for x in self.choices)}, got {value!r}", owner.id
            )
        return value

    def _kind_name(self) -> str:
        if isinstance(self.kind, tuple):
            return " or ".join(k.__name__ for k in self.kind)
        return self.kind.__name__

    def __repr__(self) -> str:
        return f"Field({self.name})"


class ResourceMeta(type):
    @classmethod
    def _get_parent_fields(cls, bases: Sequence[type]) -> list[Field]:
        fields: list[Field] = []
        for base in bases:
            fields.extend(cls._get_parent_fields(base.__bases__))
            if "fields" in base.__dict__:
                if not isinstance(base.__dict__["fields"], (tuple, list)):
                    raise Exception("fields attribute of %s should be a tuple or list" % base)
                fields.extend(base.__dict__["fields"])

        return fields

    def __new__(cls, class_name, bases, dct):
        fields = cls._get_parent_fields(bases)
        if "fields" in dct:
            if not isinstance(dct["fields"], (tuple, list)):
                raise Exception("fields attribute of %s should be a tuple or list" % class_name)

            fields.extend(dct["fields"])

        # fields of a subclass override the fields of its bases with the same name
        by_name: dict[str, Field] = {}
        for field in fields:
            if field.name in RESERVED_FOR_RESOURCE:
                raise Exception(f"{field.name} is a reserved keyword and not a valid field name, reported in {class_name}")
            by_name.pop(field.name, None)
            by_name[field.name] = field
        dct["fields"] = tuple(by_name.values())
        dct["_fields_by_name"] = by_name
        return type.__new__(cls, class_name, bases, dct)


RESERVED_FOR_RESOURCE = {
    "id",
    "name",
    "action",
    "parent",
    "updated",
    "ignore_failure",
    "provider",
    "run_context",
    "notifications",
    "implicit",
}


class Id:
    """
    A unique id that identifies a resource within a run: ``type[name]``
    """

    def __init__(self, entity_type: str, name: str) -> None:
        self._entity_type = entity_type
        self._name = name

    def get_entity_type(self) -> str:
        return self._entity_type

    def get_name(self) -> str:
        return self._name

    entity_type = property(get_entity_type)
    name = property(get_name)

    def resource_str(self) -> str:
        return f"{self._entity_type}[{self._name}]"

    def __str__(self) -> str:
        return self.resource_str()

    def __repr__(self) -> str:
        return str(self)

    def __hash__(self) -> int:
        return hash(str(self))

    def __eq__(self, other: object) -> bool:
        return str(self) == str(other) and type(self) is type(other)

    @classmethod
    def parse_id(cls, resource_id: str) -> "Id":
        """
        Parse a resource reference of the form ``type[name]``
        """
        result = PARSE_ID_REGEX.search(resource_id)
        if result is None:
            raise ValueError("Invalid id for resource %s" % resource_id)
        return Id(result.group("type"), result.group("name"))

    @classmethod
    def is_resource_id(cls, value: str) -> bool:
        return PARSE_ID_REGEX.search(value) is not None


class Resource(metaclass=ResourceMeta):
    """
    A unit of desired state, identified by its type and name. Every resource type inherits from this class and is
    registered with :class:`resource`.

    Attributes are declared in the ``fields`` tuple of each class, the tuples of the base classes are merged in.
    An attribute that was read while a lazy default was being resolved can not be assigned anymore.

    :param name: The name of the resource, unique per resource type
    :param parent: The resource that owns this resource
    :param action: The action or list of actions to run, the default action when not set
    :param ignore_failure: Log a failed converge of this resource and continue the run
    :param provider: Select an explicit provider variant, see :class:`~jenkinsconf.const.ProviderKind`
    """

    resource_type: str = "resource"
    fields: tuple[Field, ...] = ()
    _fields_by_name: dict[str, Field]
    # Pairs of attributes that can not be set together
    exclusive: tuple[tuple[str, str], ...] = ()
    allowed_actions: tuple[str, ...] = (const.ACTION_NOTHING,)
    default_action: str = const.ACTION_NOTHING
    # Declaring the same child twice through :meth:`child` returns the first declaration, see :meth:`redeclare`
    allow_redeclare: bool = False

    def __init__(
        self,
        name: str,
        parent: Optional["Resource"] = None,
        action: Union[str, Sequence[str], None] = None,
        ignore_failure: bool = False,
        provider: Optional[str] = None,
        **attributes: object,
    ) -> None:
        if not isinstance(name, str) or name == "":
            raise DeclarationError(f"The name of a {self.resource_type} resource should be a non empty string")
        self.name = name
        self.id = Id(self.resource_type, name)
        self._values: dict[str, object] = {}
        self._memo: dict[str, object] = {}
        self._frozen: set[str] = set()
        self._parent: Optional[weakref.ref["Resource"]] = weakref.ref(parent) if parent is not None else None
        self.run_context: Optional["RunContext"] = parent.run_context if parent is not None else None
        self.updated = False
        # Declared on behalf of another resource, an explicit declaration takes it over
        self.implicit = False
        self.ignore_failure = ignore_failure
        self.provider = const.ProviderKind(provider) if provider is not None else None
        self.notifications: list[tuple[str, Union["Resource", str], const.Timing]] = []
        self._children: list["Resource"] = []
        self.action = action if action is not None else self.default_action

        for key, value in attributes.items():
            if key not in self._fields_by_name:
                raise InvalidAttributeError(f"{self.resource_type} has no attribute {key}", self.id)
            setattr(self, key, value)

    @classmethod
    def get_field(cls, name: str) -> Field:
        return cls._fields_by_name[name]

    @property
    def parent(self) -> Optional["Resource"]:
        if self._parent is None:
            return None
        return self._parent()

    @property
    def action(self) -> list[str]:
        return self._action

    @action.setter
    def action(self, value: Union[str, Sequence[str]]) -> None:
        actions = [value] if isinstance(value, str) else list(value)
        if not actions:
            raise UnknownActionError(f"{self.id} requires at least one action", self.id)
        for act in actions:
            if act != const.ACTION_NOTHING and act not in self.allowed_actions:
                raise UnknownActionError(
                    f"Unknown action {act}, {self.resource_type} supports {', '.join(self.allowed_actions)}", self.id
                )
        self._action = actions

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name not in type(self)._fields_by_name:
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")
        return self._read_field(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in type(self)._fields_by_name:
            self._write_field(name, value)
        else:
            object.__setattr__(self, name, value)

    def _read_field(self, name: str) -> object:
        if _resolving.get() > 0:
            self._frozen.add(name)

        if name in self._values:
            return self._values[name]
        if name in self._memo:
            return self._memo[name]

        field = self._fields_by_name[name]
        if isinstance(field.default, lazy):
            token = _resolving.set(_resolving.get() + 1)
            try:
                value = field.check(self, field.default(self))
            finally:
                _resolving.reset(token)
            self._frozen.add(name)
        else:
            value = copy.copy(field.default)
        self._memo[name] = value
        return value

    def _write_field(self, name: str, value: object) -> None:
        if name in self._frozen:
            raise FrozenAttributeError(f"{name} was already used to compute a default and can not be changed", self.id)
        self._values[name] = self._fields_by_name[name].check(self, value)
        self._memo.pop(name, None)

    def is_set(self, name: str) -> bool:
        """
        Was the attribute given a value other than its default?
        """
        return self._values.get(name) is not None

    def items(self) -> Iterator[tuple[str, object]]:
        for field in self.fields:
            yield field.name, getattr(self, field.name)

    def validate(self) -> None:
        """
        Check required and mutually exclusive attributes. Called when the resource is declared.
        """
        for first, second in self.exclusive:
            if self.is_set(first) and self.is_set(second):
                raise ConflictingAttributesError(f"Attributes {first} and {second} can not be set together", self.id)

        for field in self.fields:
            if field.required and getattr(self, field.name) is None:
                raise MissingRequiredAttributeError(f"The attribute {field.name} is required", self.id)

    def redeclare(self, other: "Resource") -> None:
        """
        Merge a later declaration of this resource into it.

        An implicit declaration never changes a declared resource. An implicit resource takes over the attributes
        and actions of an explicit declaration. Two explicit declarations have to agree on the attributes the later
        one sets.

        :raise DeclarationError: The declarations conflict
        """
        if other.implicit:
            return
        if self.implicit:
            LOGGER.debug("%s was declared implicitly, taking over %s", self.id, ", ".join(other._values) or "its actions")
            for name, value in other._values.items():
                setattr(self, name, value)
            self.action = other.action
            self.ignore_failure = other.ignore_failure
            self.implicit = False
            self.validate()
            return

        conflicts = [name for name, value in other._values.items() if getattr(self, name) != value]
        if other.action != self.action:
            conflicts.append("action")
        if conflicts:
            raise DeclarationError(
                f"{self.id} is already declared with a different value for {', '.join(conflicts)}", self.id
            )

    def clone(self: R, **kwargs: Any) -> R:
        """
        Create a clone of this resource. The given kwargs can be used to override attributes.

        :return: The cloned resource
        """
        res = copy.copy(self)
        object.__setattr__(res, "_values", {**self._memo, **self._values})
        object.__setattr__(res, "_memo", {})
        object.__setattr__(res, "_frozen", set())
        for key, value in kwargs.items():
            setattr(res, key, value)
        return res

    def notifies(
        self, action: str, target: Union["Resource", str], timing: Union[const.Timing, str] = const.Timing.delayed
    ) -> None:
        """
        Run action on target when this resource changed.

        :param target: The target resource or a reference of the form ``type[name]``
        :param timing: ``immediate`` or ``delayed``
        """
        if isinstance(target, str) and not Id.is_resource_id(target):
            raise DeclarationError(f"Invalid notification target {target}, expected type[name]", self.id)
        self.notifications.append((action, target, const.Timing(timing)))

    def subscribes(
        self, action: str, source: Union["Resource", str], timing: Union[const.Timing, str] = const.Timing.delayed
    ) -> None:
        """
        Run action on this resource when source changed. A source given as reference is looked up in the run.
        """
        if isinstance(source, str):
            if self.run_context is None:
                raise DeclarationError(f"Can not subscribe to {source} before {self.id} is declared", self.id)
            source = self.run_context.resources.lookup(source)
        source.notifies(action, self, timing)

    def after_created(self) -> None:
        """
        Called once the resource is declared into a run. Override to declare child resources.
        """

    def add_child(self, child: "Resource", allow_existing: bool = False) -> "Resource":
        """
        Declare child right after this resource and the children that were added before it.
        """
        if self.run_context is None:
            raise DeclarationError(f"{self.id} has to be declared before children can be added", self.id)
        result = self.run_context.declare(child, allow_existing=allow_existing, anchor=self)
        if result is child:
            self._children.append(child)
        return result

    def child(self, keyword: str, name: str, **attributes: object) -> "Resource":
        """
        Create and declare a child resource through its keyword, for example ``server.child("plugin", "git")``.
        """
        cls = subresource.get_class(self.resource_type, keyword)
        if cls is None:
            raise UnknownSubResourceError(
                f"{self.resource_type} has no sub-resource {keyword}, known are: "
                f"{', '.join(subresource.get_keywords(self.resource_type))}",
                self.id,
            )
        return self.add_child(cls(name, parent=self, **attributes), allow_existing=cls.allow_redeclare)

    @property
    def children(self) -> list["Resource"]:
        return list(self._children)

    def __str__(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return str(self)


class PurgeableResource(Resource):
    """
    A resource that can be created and removed.
    """

    allowed_actions = ("create", "delete")
    default_action = "create"
