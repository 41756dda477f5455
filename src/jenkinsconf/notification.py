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
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional, Union

from jenkinsconf import const
from jenkinsconf.exceptions import ResourceNotFoundError, ResourceReferenceError
from jenkinsconf.resources import Id, Resource

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """
    Run action on target because source changed.
    """

    source: Resource
    action: str
    target: Union[Resource, str]
    timing: const.Timing

    @property
    def target_id(self) -> Id:
        if isinstance(self.target, Resource):
            return self.target.id
        return Id.parse_id(self.target)

    @property
    def key(self) -> tuple[Id, str]:
        return (self.target_id, self.action)

    def resolve(self, lookup: Callable[[str], Resource]) -> Resource:
        """
        Resolve the target of this notification.

        :param lookup: Finds a declared resource by reference
        :raise ResourceReferenceError: The target was never declared, a target given as resource has to be the
            resource that is declared in the run
        """
        cause: Optional[BaseException] = None
        try:
            found = lookup(str(self.target_id))
        except ResourceNotFoundError as e:
            cause = e
        else:
            if not isinstance(self.target, Resource) or found is self.target:
                return found
        raise ResourceReferenceError(
            f"{self.source.id} notifies {self.action} on {self.target_id}, which is not declared", self.source.id, cause=cause
        )

    def __str__(self) -> str:
        return f"{self.source.id} -> {self.action} {self.target_id} ({self.timing.value})"


class NotificationQueue:
    """
    The notifications of a single run.

    Immediate notifications are returned in registration order by :meth:`pop_immediate`. Delayed notifications are
    deduplicated by target and action and every (target, action) pair is handed out at most once per run by
    :meth:`pop_delayed`, in the order in which it was first registered.
    """

    def __init__(self) -> None:
        self._immediate: list[Notification] = []
        self._delayed: dict[tuple[Id, str], Notification] = {}
        self._fired: set[tuple[Id, str]] = set()

    def notify(
        self, source: Resource, target: Union[Resource, str], action: str, timing: Union[const.Timing, str]
    ) -> Notification:
        notification = Notification(source, action, target, const.Timing(timing))
        if notification.timing is const.Timing.immediate:
            LOGGER.debug("Queueing immediate notification %s", notification)
            self._immediate.append(notification)
        elif notification.key in self._fired:
            LOGGER.debug("Delayed notification %s was already executed in this run", notification)
        elif notification.key in self._delayed:
            LOGGER.debug("Delayed notification %s is already queued", notification)
        else:
            LOGGER.debug("Queueing delayed notification %s", notification)
            self._delayed[notification.key] = notification
        return notification

    def pop_immediate(self) -> Optional[Notification]:
        if not self._immediate:
            return None
        return self._immediate.pop(0)

    def pop_delayed(self) -> Optional[Notification]:
        if not self._delayed:
            return None
        key = next(iter(self._delayed))
        self._fired.add(key)
        return self._delayed.pop(key)

    @property
    def pending(self) -> list[Notification]:
        return self._immediate + list(self._delayed.values())
