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
from collections.abc import Iterator
from typing import Optional

from jenkinsconf import const
from jenkinsconf.exceptions import DuplicateResourceError, ResourceNotFoundError
from jenkinsconf.resources import Id, Resource

LOGGER = logging.getLogger(__name__)


class ResourceCollection:
    """
    The ordered collection of the resources of a single run.

    Resources are declared at the insertion cursor: at the end of the collection while the run is being
    declared and right after the resource that is being converged while the collection is walked.
    """

    def __init__(self) -> None:
        self._resources: list[Resource] = []
        self._index: dict[Id, Resource] = {}
        # The last resource inserted after a given anchor
        self._tails: dict[Id, Resource] = {}
        self._current: Optional[Resource] = None

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, resource_id: object) -> bool:
        if isinstance(resource_id, str):
            resource_id = Id.parse_id(resource_id)
        return resource_id in self._index

    def all(self) -> list[Resource]:
        return list(self._resources)

    def declare(self, resource: Resource, allow_existing: bool = False) -> Resource:
        """
        Add a resource at the insertion cursor.

        :param allow_existing: Return the resource that is already declared with the same id instead of failing
        :return: The declared resource
        """
        existing = self._check_duplicate(resource, allow_existing)
        if existing is not None:
            return existing
        if self._current is not None:
            self._insert_after(resource, self._current)
        else:
            self._resources.append(resource)
            self._index[resource.id] = resource
        return resource

    def insert_relative(
        self,
        resource: Resource,
        anchor: Resource,
        position: const.Position = const.Position.after,
        allow_existing: bool = False,
    ) -> Resource:
        """
        Insert a resource before or after anchor. Successive inserts after the same anchor are kept in the order of
        insertion, inserts before the same anchor as well.
        """
        existing = self._check_duplicate(resource, allow_existing)
        if existing is not None:
            return existing
        if anchor.id not in self._index:
            raise ResourceNotFoundError(f"Can not insert relative to {anchor.id}, it is not declared", resource.id)

        if const.Position(position) is const.Position.before:
            self._resources.insert(self._resources.index(anchor), resource)
            self._index[resource.id] = resource
        else:
            self._insert_after(resource, anchor)
        return resource

    def _check_duplicate(self, resource: Resource, allow_existing: bool) -> Optional[Resource]:
        existing = self._index.get(resource.id)
        if existing is None:
            return None
        if allow_existing:
            LOGGER.debug("Resource %s is already declared, reusing it", resource.id)
            return existing
        raise DuplicateResourceError(f"Resource {resource.id} is already declared", resource.id)

    def _last_descendant(self, anchor: Resource) -> Resource:
        last = anchor
        while last.id in self._tails:
            last = self._tails[last.id]
        return last

    def _insert_after(self, resource: Resource, anchor: Resource) -> None:
        after = self._last_descendant(anchor)
        self._resources.insert(self._resources.index(after) + 1, resource)
        self._index[resource.id] = resource
        self._tails[anchor.id] = resource

    def find(self, entity_type: str, name: str) -> Resource:
        """
        Find a resource by type and name.

        :raise ResourceNotFoundError: No such resource was declared
        """
        resource_id = Id(entity_type, name)
        if resource_id not in self._index:
            raise ResourceNotFoundError(f"Resource {resource_id} is not declared")
        return self._index[resource_id]

    def lookup(self, reference: str) -> Resource:
        """
        Find a resource by a reference of the form ``type[name]``.
        """
        resource_id = Id.parse_id(reference)
        return self.find(resource_id.entity_type, resource_id.name)

    def each(self) -> Iterator[Resource]:
        """
        Iterate the collection in order. Resources that are inserted after the current resource while iterating are
        returned as well.
        """
        position = 0
        try:
            while position < len(self._resources):
                current = self._resources[position]
                self._current = current
                yield current
                # resources may have been inserted before the current one
                position = self._resources.index(current) + 1
        finally:
            self._current = None
