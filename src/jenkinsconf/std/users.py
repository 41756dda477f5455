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
from typing import Any

from jenkinsconf import const
from jenkinsconf.exceptions import ConvergeError
from jenkinsconf.handler import CRUDHandler, HandlerContext, ResourcePurged, provider
from jenkinsconf.resources import Field, PurgeableResource, resource

LOGGER = logging.getLogger(__name__)


@resource("user")
class User(PurgeableResource):
    """
    A local user account. Attributes that are not set are left as the system picks them.
    """

    fields = (
        Field("uid", int),
        Field("group", str),
        Field("home", str),
        Field("shell", str),
        Field("comment", str),
        Field("system", bool, default=False),
    )


@resource("group")
class Group(PurgeableResource):
    fields = (
        Field("gid", int),
        Field("members", list),
        Field("system", bool, default=False),
    )


@provider("user", name=const.ProviderKind.generic)
class UserHandler(CRUDHandler):
    def _run(self, resource: User, command: str, args: list[str]) -> None:
        stdout, stderr, rc = self._io.run(command, args)
        if rc != 0:
            raise ConvergeError(f"{command} {resource.name} failed: {stderr or stdout}", resource.id)

    def read_resource(self, ctx: HandlerContext, resource: PurgeableResource) -> None:
        assert isinstance(resource, User)
        entry = self._io.get_user(resource.name)
        if entry is None:
            raise ResourcePurged()

        resource.uid = entry["uid"]
        resource.home = entry["home"]
        resource.shell = entry["shell"]
        resource.comment = entry["comment"]
        resource.group = str(self._io.group_name(entry["gid"]))

    def calculate_diff(self, ctx: HandlerContext, current: Any, desired: Any) -> dict[str, dict[str, Any]]:
        changes = super().calculate_diff(ctx, current, desired)
        # the system flag only applies when the account is created
        changes.pop("system", None)
        return changes

    def _options(self, resource: User) -> list[str]:
        args = []
        if resource.uid is not None:
            args += ["-u", str(resource.uid)]
        if resource.group is not None:
            args += ["-g", resource.group]
        if resource.home is not None:
            args += ["-d", resource.home]
        if resource.shell is not None:
            args += ["-s", resource.shell]
        if resource.comment is not None:
            args += ["-c", resource.comment]
        return args

    def create_resource(self, ctx: HandlerContext, resource: PurgeableResource) -> None:
        assert isinstance(resource, User)
        args = self._options(resource)
        if resource.system:
            args.append("-r")
        self._run(resource, "useradd", args + [resource.name])

    def update_resource(self, ctx: HandlerContext, changes: dict[str, dict[str, Any]], resource: PurgeableResource) -> None:
        assert isinstance(resource, User)
        self._run(resource, "usermod", self._options(resource) + [resource.name])

    def delete_resource(self, ctx: HandlerContext, resource: PurgeableResource) -> None:
        assert isinstance(resource, User)
        self._run(resource, "userdel", [resource.name])


@provider("group", name=const.ProviderKind.generic)
class GroupHandler(CRUDHandler):
    def _run(self, resource: Group, command: str, args: list[str]) -> None:
        stdout, stderr, rc = self._io.run(command, args)
        if rc != 0:
            raise ConvergeError(f"{command} {resource.name} failed: {stderr or stdout}", resource.id)

    def read_resource(self, ctx: HandlerContext, resource: PurgeableResource) -> None:
        assert isinstance(resource, Group)
        entry = self._io.get_group(resource.name)
        if entry is None:
            raise ResourcePurged()
        resource.gid = entry["gid"]
        resource.members = entry["members"]

    def calculate_diff(self, ctx: HandlerContext, current: Any, desired: Any) -> dict[str, dict[str, Any]]:
        changes = super().calculate_diff(ctx, current, desired)
        changes.pop("system", None)
        if "members" in changes and sorted(changes["members"]["current"] or []) == sorted(desired.members):
            del changes["members"]
        return changes

    def create_resource(self, ctx: HandlerContext, resource: PurgeableResource) -> None:
        assert isinstance(resource, Group)
        args = []
        if resource.gid is not None:
            args += ["-g", str(resource.gid)]
        if resource.system:
            args.append("-r")
        self._run(resource, "groupadd", args + [resource.name])
        if resource.members:
            self._run(resource, "gpasswd", ["-M", ",".join(resource.members), resource.name])

    def update_resource(self, ctx: HandlerContext, changes: dict[str, dict[str, Any]], resource: PurgeableResource) -> None:
        assert isinstance(resource, Group)
        if "gid" in changes:
            self._run(resource, "groupmod", ["-g", str(resource.gid), resource.name])
        if "members" in changes:
            self._run(resource, "gpasswd", ["-M", ",".join(resource.members), resource.name])

    def delete_resource(self, ctx: HandlerContext, resource: PurgeableResource) -> None:
        assert isinstance(resource, Group)
        self._run(resource, "groupdel", [resource.name])
