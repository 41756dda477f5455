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

import hashlib
import logging
from typing import Optional, Union

from jenkinsconf import const
from jenkinsconf.exceptions import ConvergeError, IntegrityError, StateReadError
from jenkinsconf.handler import HandlerContext, ResourceHandler, provider
from jenkinsconf.resources import Field, Resource, lazy, resource

LOGGER = logging.getLogger(__name__)

FileStat = dict[str, Union[int, str]]


class FileBase(Resource):
    """
    A path on the filesystem with ownership and permissions.
    """

    fields = (
        Field("path", str, default=lazy(lambda r: r.name)),
        Field("owner", str),
        Field("group", str),
        Field("mode", str),
    )


@resource("file")
class File(FileBase):
    """
    A file with the given content. The content is not managed when it is not set.
    """

    fields = (Field("content", str),)
    allowed_actions = ("create", "create_if_missing", "delete")
    default_action = "create"


@resource("template")
class Template(FileBase):
    """
    A file rendered from a template with the given variables.
    """

    fields = (
        Field("source", str, required=True),
        Field("variables", dict, default={}),
    )
    allowed_actions = ("create", "create_if_missing", "delete")
    default_action = "create"


@resource("remote_file")
class RemoteFile(FileBase):
    """
    A file downloaded from source. When a checksum is set, a download that does not match it is removed and fails the run.
    """

    fields = (
        Field("source", str, required=True),
        Field("checksum", str),
    )
    allowed_actions = ("create", "create_if_missing", "delete")
    default_action = "create"


@resource("directory")
class Directory(FileBase):
    fields = (Field("recursive", bool, default=False),)
    allowed_actions = ("create", "delete")
    default_action = "create"


def sha1(content: bytes) -> str:
    return hashlib.sha1(content).hexdigest()


class FileStateHandler(ResourceHandler):
    """
    Shared steps of the handlers of resources on the filesystem
    """

    def load_current_state(self, ctx: HandlerContext, resource: Resource) -> Optional[FileStat]:
        assert isinstance(resource, FileBase)
        if not self._io.file_exists(resource.path):
            return None
        is_dir = self._io.is_dir(resource.path)
        if is_dir != isinstance(resource, Directory):
            raise StateReadError(
                f"{resource.path} exists but is {'a directory' if is_dir else 'not a directory'}", resource.id
            )
        return self._io.file_stat(resource.path)

    def set_attributes(self, ctx: HandlerContext, resource: FileBase, current: Optional[FileStat]) -> None:
        """
        Converge owner, group and mode. The path is stat'ed again when current is None.
        """
        stat = current if current is not None else self._io.file_stat(resource.path)

        owner_changed = resource.owner is not None and stat.get("owner") != resource.owner
        group_changed = resource.group is not None and stat.get("group") != resource.group
        if owner_changed:
            ctx.add_change("owner", desired=resource.owner, current=stat.get("owner"))
        if group_changed:
            ctx.add_change("group", desired=resource.group, current=stat.get("group"))
        if owner_changed or group_changed:
            self.converge_by(
                ctx,
                f"change the owner of {resource.path} to {resource.owner or ''}:{resource.group or ''}",
                lambda: self._io.chown(
                    resource.path, resource.owner if owner_changed else None, resource.group if group_changed else None
                ),
            )

        if resource.mode is not None:
            current_mode = stat.get("permissions")
            if current_mode is None or int(str(current_mode), 8) != int(resource.mode, 8):
                ctx.add_change("mode", desired=resource.mode, current=current_mode)
                self.converge_by(
                    ctx,
                    f"change the mode of {resource.path} to {resource.mode}",
                    lambda: self._io.chmod(resource.path, resource.mode),
                )

    def write_content(self, ctx: HandlerContext, resource: FileBase, current: Optional[FileStat], content: bytes) -> None:
        if current is None:
            ctx.add_change("purged", desired=False, current=True)
            ctx.set_created()
            self.converge_by(ctx, f"create {resource.path}", lambda: self._io.put(resource.path, content))
            if not ctx.is_dry_run():
                self.set_attributes(ctx, resource, None)
            return

        current_hash = self._io.hash_file(resource.path)
        if current_hash != sha1(content):
            ctx.add_change("content", desired=sha1(content), current=current_hash)
            self.converge_by(ctx, f"update the content of {resource.path}", lambda: self._io.put(resource.path, content))
        self.set_attributes(ctx, resource, current)

    def action_create_if_missing(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        if current is not None:
            ctx.debug("%(resource_id)s already exists", resource_id=resource.id)
            return
        self.converge(ctx, resource, current, "create")

    def action_delete(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, FileBase)
        if current is None:
            ctx.debug("%(path)s does not exist", path=resource.path)
            return
        ctx.add_change("purged", desired=True, current=False)
        ctx.set_purged()
        self.converge_by(ctx, f"delete {resource.path}", lambda: self._io.remove(resource.path))


@provider("file", name=const.ProviderKind.generic)
class FileHandler(FileStateHandler):
    def content(self, ctx: HandlerContext, resource: FileBase) -> Optional[bytes]:
        assert isinstance(resource, File)
        if resource.content is None:
            return None
        return resource.content.encode("utf-8")

    def action_create(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, FileBase)
        content = self.content(ctx, resource)
        if content is None and current is not None:
            # only the metadata is managed
            self.set_attributes(ctx, resource, current)  # type: ignore[arg-type]
            return
        self.write_content(ctx, resource, current, content if content is not None else b"")  # type: ignore[arg-type]


@provider("template", name=const.ProviderKind.generic)
class TemplateHandler(FileHandler):
    def content(self, ctx: HandlerContext, resource: FileBase) -> Optional[bytes]:
        assert isinstance(resource, Template)
        return self.run_context.renderer.render(resource.source, resource.variables).encode("utf-8")


@provider("remote_file", name=const.ProviderKind.generic)
class RemoteFileHandler(FileStateHandler):
    def _verified(self, resource: RemoteFile) -> bool:
        return resource.checksum is None or self._io.hash_file(resource.path) == resource.checksum.lower()

    def download(self, ctx: HandlerContext, resource: RemoteFile) -> None:
        """
        Download the source to the path. A download that does not match the checksum is removed again.
        """
        ctx.debug("Downloading %(source)s", source=resource.source)
        try:
            response = self.run_context.http_client.fetch(resource.source)
        except ConnectionError as e:
            raise ConvergeError(f"Failed to download {resource.source}: {e}", resource.id, cause=e)
        if response.code != 200:
            raise ConvergeError(f"Failed to download {resource.source}: HTTP {response.code}", resource.id)

        self._io.put(resource.path, response.body)
        if not self._verified(resource):
            actual = self._io.hash_file(resource.path)
            self._io.remove(resource.path)
            raise IntegrityError(
                f"Checksum mismatch for {resource.source}: expected {resource.checksum}, got {actual}", resource.id
            )

    def action_create(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, RemoteFile)
        if current is not None and self._verified(resource):
            self.set_attributes(ctx, resource, current)  # type: ignore[arg-type]
            return

        if current is None:
            ctx.add_change("purged", desired=False, current=True)
            ctx.set_created()
        else:
            ctx.add_change("checksum", desired=resource.checksum, current=self._io.hash_file(resource.path))
        self.converge_by(ctx, f"download {resource.source} to {resource.path}", lambda: self.download(ctx, resource))
        if not ctx.is_dry_run():
            self.set_attributes(ctx, resource, None)


@provider("directory", name=const.ProviderKind.generic)
class DirectoryHandler(FileStateHandler):
    def action_create(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Directory)
        if current is None:
            ctx.add_change("purged", desired=False, current=True)
            ctx.set_created()
            self.converge_by(
                ctx, f"create directory {resource.path}", lambda: self._io.mkdir(resource.path, recursive=resource.recursive)
            )
            if ctx.is_dry_run():
                return
        self.set_attributes(ctx, resource, current)  # type: ignore[arg-type]

    def action_delete(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Directory)
        if current is None:
            ctx.debug("%(path)s does not exist", path=resource.path)
            return
        if not resource.recursive and self._io.list_dir(resource.path):
            raise ConvergeError(f"{resource.path} is not empty, set recursive to remove it", resource.id)
        ctx.add_change("purged", desired=True, current=False)
        ctx.set_purged()
        self.converge_by(ctx, f"delete directory {resource.path}", lambda: self._io.rmdir(resource.path))
