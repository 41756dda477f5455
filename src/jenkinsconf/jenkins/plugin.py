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
import os
from dataclasses import dataclass
from typing import Optional

from jenkinsconf import config, const
from jenkinsconf.exceptions import ResourceNotFoundError
from jenkinsconf.handler import HandlerContext, ResourceHandler, provider
from jenkinsconf.resources import Field, Resource, from_parent, lazy, resource, subresource
from jenkinsconf.std.files import Directory, File, RemoteFile
from jenkinsconf.updatecenter import is_newer

LOGGER = logging.getLogger(__name__)


def _resolved_version(res: Resource) -> str:
    if res.version == const.LATEST:
        assert res.run_context is not None
        return res.run_context.update_center.latest_version(res.name)
    return res.version


def _plugin_url(res: Resource) -> str:
    return config.server_plugin_url.get() % {
        "mirror": config.server_mirror.get(),
        "name": res.name,
        "version": _resolved_version(res),
    }


def _plugin_checksum(res: Resource) -> Optional[str]:
    """
    The checksum is only known when the update center publishes the requested version
    """
    assert res.run_context is not None
    try:
        info = res.run_context.update_center.plugin(res.name)
    except ResourceNotFoundError:
        return None
    if res.version in (const.LATEST, info.version):
        return info.sha1_hex()
    return None


@subresource("plugin", parent_type="jenkins")
@resource("jenkins_plugin")
class Plugin(Resource):
    """
    A plugin of a Jenkins server. The required dependencies the update center lists for the plugin are declared
    implicitly before it, unless they are declared already. Declaring such a dependency explicitly later on sets its
    attributes.
    """

    fields = (
        Field("version", str, default=const.LATEST),
        Field("url", str, default=lazy(_plugin_url)),
        Field("checksum", str, default=lazy(_plugin_checksum)),
        Field("install_deps", bool, default=True),
        Field("plugins_path", str, default=from_parent("plugins_path"), required=True),
        Field("user", str, default=from_parent("user", fallback=config.server_user.get)),
        Field("group", str, default=from_parent("plugins_dir_group", fallback=config.server_plugins_dir_group.get)),
    )
    allowed_actions = ("install", "remove")
    default_action = "install"
    allow_redeclare = True

    @property
    def plugin_file(self) -> str:
        return os.path.join(self.plugins_path, self.name + const.PLUGIN_EXTENSION)

    @property
    def plugin_dir(self) -> str:
        return os.path.join(self.plugins_path, self.name)

    @property
    def manifest(self) -> str:
        return os.path.join(self.plugin_dir, "META-INF", "MANIFEST.MF")

    def after_created(self) -> None:
        assert self.run_context is not None
        if not self.install_deps or "install" not in self.action:
            return
        try:
            info = self.run_context.update_center.plugin(self.name)
        except ResourceNotFoundError:
            LOGGER.debug("%s is not in the update center, its dependencies are not installed", self.id)
            return
        for dependency in info.required_dependencies():
            plugin = Plugin(dependency.name, parent=self.parent)
            plugin.implicit = True
            self.run_context.declare(plugin, allow_existing=True, anchor=self, position=const.Position.before)


@dataclass
class PluginState:
    version: Optional[str]
    installed: bool


def read_plugin_version(manifest: str) -> Optional[str]:
    match = const.PLUGIN_VERSION_REGEX.search(manifest)
    if match is None:
        return None
    return match.group(1).strip()


@provider("jenkins_plugin", name=const.ProviderKind.generic)
class PluginHandler(ResourceHandler):
    def load_current_state(self, ctx: HandlerContext, resource: Resource) -> PluginState:
        assert isinstance(resource, Plugin)
        version = None
        if self._io.file_exists(resource.manifest):
            version = read_plugin_version(self._io.read(resource.manifest))
        return PluginState(version=version, installed=self._io.file_exists(resource.plugin_file))

    def download_steps(self, resource: Plugin) -> list[Resource]:
        return [
            RemoteFile(
                resource.plugin_file,
                source=resource.url,
                checksum=resource.checksum,
                owner=resource.user,
                group=resource.group,
            ),
            File(
                resource.plugin_file + const.PINNED_SUFFIX,
                action="create_if_missing",
                owner=resource.user,
                group=resource.group,
            ),
        ]

    def remove_steps(self, resource: Plugin) -> list[Resource]:
        return [
            File(resource.plugin_file, action="delete"),
            Directory(resource.plugin_dir, action="delete", recursive=True),
        ]

    def notify_restart(self, ctx: HandlerContext, resource: Plugin) -> None:
        if resource.parent is not None:
            ctx.notify("restart", resource.parent)

    def desired_version(self, resource: Plugin, current: PluginState) -> str:
        """
        The version to install. A plugin at the latest version is upgraded when the update center publishes a newer
        version than the installed one.
        """
        if resource.version != const.LATEST or current.version is None:
            return resource.version
        try:
            latest = self.run_context.update_center.latest_version(resource.name)
        except ResourceNotFoundError:
            return resource.version
        if is_newer(latest, current.version):
            return latest
        return resource.version

    def action_install(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Plugin) and isinstance(current, PluginState)
        desired = self.desired_version(resource, current)
        ctx.debug("current version=%(current)s, requested version=%(desired)s", current=current.version, desired=desired)

        if current.version is not None and desired != const.LATEST and current.version != desired:
            ctx.add_change("version", desired=desired, current=current.version)
            ctx.add_description(f"upgrade {resource.name} from {current.version} to {desired}")
            # the old archive and its exploded directory have to go before the new version is downloaded
            self.run_inline(ctx, self.remove_steps(resource) + self.download_steps(resource))
            self.notify_restart(ctx, resource)
        elif current.installed:
            ctx.debug("%(resource_id)s already exists", resource_id=resource.id)
        else:
            ctx.add_change("version", desired=resource.version, current=None)
            ctx.add_description(f"install {resource.name} version {resource.version}")
            self.run_inline(ctx, self.download_steps(resource))
            self.notify_restart(ctx, resource)

    def action_remove(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Plugin) and isinstance(current, PluginState)
        if not current.installed:
            ctx.debug("%(resource_id)s doesn't exist", resource_id=resource.id)
            return
        ctx.add_change("installed", desired=False, current=True)
        ctx.add_description(f"remove {resource.name}")
        self.run_inline(ctx, self.remove_steps(resource))
        self.notify_restart(ctx, resource)
