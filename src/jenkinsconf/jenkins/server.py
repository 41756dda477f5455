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
from typing import Optional

from jenkinsconf import aggregate, config, const
from jenkinsconf.api import JenkinsAPI
from jenkinsconf.config import Option
from jenkinsconf.handler import HandlerContext, ResourceHandler, provider
from jenkinsconf.resources import Field, Resource, from_config, lazy, resource
from jenkinsconf.std.files import Directory, File, RemoteFile, Template
from jenkinsconf.std.packages import Package
from jenkinsconf.std.services import Service
from jenkinsconf.std.users import Group, User

LOGGER = logging.getLogger(__name__)

# Group and permission defaults of the distribution packages, None means the user of the server
PACKAGE_DEFAULTS: dict[str, dict[str, Optional[str]]] = {
    "debian": {
        "log_dir_permissions": "755",
        "home_dir_group": "adm",
        "log_dir_group": "adm",
        "ssh_dir_group": "nogroup",
    },
    "rhel": {
        "group": None,
        "log_dir_permissions": "750",
        "home_dir_group": None,
        "log_dir_group": None,
        "ssh_dir_group": None,
    },
}


def java_binary(java_home: Optional[str]) -> str:
    if java_home:
        return os.path.join(java_home, "bin", "java")
    return "java"


def package_default(name: str, option: Option[str]) -> lazy:
    """
    A lazy default that follows the layout of the distribution package when the server is installed from a package
    """

    def get(res: Resource) -> object:
        if res.install_method == "package" and res.run_context is not None:
            defaults = PACKAGE_DEFAULTS.get(res.run_context.facts.platform_family, {})
            if name in defaults:
                value = defaults[name]
                return res.user if value is None else value
        return option.get()

    return lazy(get)


def _server_url(res: Resource) -> str:
    url = config.server_url.get()
    if url is not None:
        return url
    return f"http://{res.host}:{res.port}"


def _war_url(res: Resource) -> str:
    return config.server_war_url.get() % {"mirror": config.server_mirror.get(), "version": res.version}


@resource("jenkins")
class Jenkins(Resource):
    """
    A Jenkins server. The name is the home directory of the server.

    Plugins, jobs, views, credentials and config fragments are declared as children with :meth:`child`, for example
    ``server.child("plugin", "git")``. A version of ``latest`` is resolved through the update center when the server
    is installed from the war.
    """

    fields = (
        Field("path", str, default=lazy(lambda r: r.name)),
        Field("version", str, default=const.LATEST),
        Field("install_method", str, default=from_config(config.server_install_method), choices=("war", "package")),
        Field("war_url", str, default=lazy(_war_url)),
        Field("log_dir", str, default=from_config(config.server_log_dir)),
        Field("service_name", str, default=from_config(config.server_service_name)),
        Field("user", str, default=from_config(config.server_user)),
        Field("group", str, default=package_default("group", config.server_group)),
        Field("home_dir_group", str, default=package_default("home_dir_group", config.server_home_dir_group)),
        Field("plugins_dir_group", str, default=package_default("plugins_dir_group", config.server_plugins_dir_group)),
        Field("ssh_dir_group", str, default=package_default("ssh_dir_group", config.server_ssh_dir_group)),
        Field("log_dir_group", str, default=package_default("log_dir_group", config.server_log_dir_group)),
        Field("dir_permissions", str, default=from_config(config.server_dir_permissions)),
        Field("ssh_dir_permissions", str, default=from_config(config.server_ssh_dir_permissions)),
        Field("log_dir_permissions", str, default=package_default("log_dir_permissions", config.server_log_dir_permissions)),
        Field("port", int, default=from_config(config.server_port)),
        Field("host", str, default=from_config(config.server_host)),
        Field("url", str, default=lazy(_server_url)),
        Field("slave_agent_port", int, default=from_config(config.server_slave_agent_port)),
        Field("executors", int, default=from_config(config.server_executors)),
        Field("java_home", str, default=from_config(config.server_java_home)),
        Field("jvm_options", str, default=from_config(config.server_jvm_options)),
    )
    allowed_actions = ("install", "uninstall", "restart", "rebuild_config", "rebuild_credentials", "configure")
    default_action = "install"

    @property
    def plugins_path(self) -> str:
        return os.path.join(self.path, const.PLUGINS_DIR)

    @property
    def config_path(self) -> str:
        return os.path.join(self.path, const.CONFIG_FRAGMENTS_DIR)

    @property
    def credentials_path(self) -> str:
        return os.path.join(self.path, const.CREDENTIALS_FRAGMENTS_DIR)

    @property
    def jobs_path(self) -> str:
        return os.path.join(self.path, const.JOBS_DIR)

    @property
    def ssh_path(self) -> str:
        return os.path.join(self.path, const.SSH_DIR)

    @property
    def war_path(self) -> str:
        return os.path.join(self.path, f"jenkins-{self.version}.war")

    def after_created(self) -> None:
        assert self.run_context is not None
        if self.install_method == "war" and self.version == const.LATEST:
            self.version = self.run_context.update_center.core_version()
            LOGGER.debug("Resolved the latest Jenkins version to %s", self.version)

        if "uninstall" in self.action:
            return
        self.child(
            "config",
            "00-core",
            source="core.xml.j2",
            variables={
                "executors": self.executors,
                # 0 lets Jenkins pick a random port
                "slave_agent_port": self.slave_agent_port if self.slave_agent_port is not None else 0,
            },
        )


@provider("jenkins", name=const.ProviderKind.generic)
class JenkinsHandler(ResourceHandler):
    """
    Installs the Jenkins war and runs it as a systemd service
    """

    def account(self, resource: Jenkins) -> list[Resource]:
        return [
            Group(resource.group, system=True),
            User(resource.user, group=resource.group, home=resource.path, system=True, comment="Jenkins CI server"),
        ]

    def directories(self, resource: Jenkins) -> list[Resource]:
        owner = resource.user
        return [
            Directory(
                resource.path, owner=owner, group=resource.home_dir_group, mode=resource.dir_permissions, recursive=True
            ),
            Directory(resource.plugins_path, owner=owner, group=resource.plugins_dir_group, mode=resource.dir_permissions),
            Directory(
                resource.log_dir, owner=owner, group=resource.log_dir_group, mode=resource.log_dir_permissions, recursive=True
            ),
            Directory(resource.ssh_path, owner=owner, group=resource.ssh_dir_group, mode=resource.ssh_dir_permissions),
            Directory(resource.config_path, owner=owner, group=resource.group, mode="700"),
            Directory(resource.credentials_path, owner=owner, group=resource.group, mode="700"),
            Directory(resource.jobs_path, owner=owner, group=resource.group, mode=resource.dir_permissions),
        ]

    def unit_path(self, resource: Jenkins) -> str:
        return os.path.join(config.systemd_unit_dir.get(), f"{resource.service_name}.service")

    def install_steps(self, resource: Jenkins) -> list[Resource]:
        war = RemoteFile(resource.war_path, source=resource.war_url, owner=resource.user, group=resource.group, mode="644")
        war.notifies("restart", resource)

        unit = Template(
            self.unit_path(resource),
            source="jenkins.service.j2",
            mode="644",
            variables={
                "user": resource.user,
                "group": resource.group,
                "home": resource.path,
                "java_home": resource.java_home,
                "java": java_binary(resource.java_home),
                "jvm_options": resource.jvm_options,
                "war": resource.war_path,
                "port": resource.port,
            },
        )
        unit.notifies("restart", resource)
        service = Service(resource.service_name, action=["enable", "start"])
        return self.account(resource) + self.directories(resource) + [war, unit, service]

    def uninstall_steps(self, resource: Jenkins) -> list[Resource]:
        return [
            Service(resource.service_name, action=["stop", "disable"]),
            File(self.unit_path(resource), action="delete"),
            File(resource.war_path, action="delete"),
        ]

    def action_install(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Jenkins)
        self.run_inline(ctx, self.install_steps(resource))

    def action_uninstall(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Jenkins)
        self.run_inline(
            ctx,
            self.uninstall_steps(resource)
            + [
                Directory(resource.path, action="delete", recursive=True),
                Directory(resource.log_dir, action="delete", recursive=True),
            ],
        )

    def action_restart(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Jenkins)
        self.run_inline(ctx, [Service(resource.service_name, action="restart")])
        if ctx.is_dry_run():
            return
        self.wait_until_up(ctx, resource)

    def wait_until_up(self, ctx: HandlerContext, resource: Jenkins) -> None:
        api = JenkinsAPI(resource.url, http_client=self.run_context.http_client)
        attempts = api.wait_until_up(config.server_wait_max_attempts.get())
        ctx.info("Jenkins at %(url)s is up after %(attempts)d attempts", url=resource.url, attempts=attempts)

    def rebuild(self, ctx: HandlerContext, resource: Jenkins, fragment_dir: str, file_name: str, wrap: tuple[str, str]) -> None:
        """
        Aggregate the fragments in fragment_dir into file_name in the home of the server. A changed file restarts the
        server.
        """
        destination = os.path.join(resource.path, file_name)
        content = aggregate.aggregate(fragment_dir, wrap[0], wrap[1], self._io)
        aggregate.validate(content, destination)
        if self.run_inline(ctx, [File(destination, content=content, owner=resource.user, group=resource.group, mode="600")]):
            ctx.notify("restart", resource)

    def action_rebuild_config(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Jenkins)
        self.rebuild(ctx, resource, resource.config_path, const.CONFIG_FILE, (const.CONFIG_HEADER, const.CONFIG_FOOTER))

    def action_rebuild_credentials(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Jenkins)
        self.rebuild(
            ctx,
            resource,
            resource.credentials_path,
            const.CREDENTIALS_FILE,
            (const.CREDENTIALS_HEADER, const.CREDENTIALS_FOOTER),
        )

    def action_configure(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        self.action_rebuild_config(ctx, resource, current)
        self.action_rebuild_credentials(ctx, resource, current)


class JenkinsPackageHandler(JenkinsHandler):
    """
    Installs Jenkins from the package of the distribution. The package creates the account and the service.
    """

    platform_family: str

    def available(self, resource: Resource) -> bool:
        assert isinstance(resource, Jenkins)
        return resource.install_method == "package" and self.run_context.facts.platform_family == self.platform_family

    def install_steps(self, resource: Jenkins) -> list[Resource]:
        package = Package("jenkins", version=None if resource.version == const.LATEST else resource.version)
        package.notifies("restart", resource)
        return [package] + self.directories(resource) + [Service(resource.service_name, action=["enable", "start"])]

    def uninstall_steps(self, resource: Jenkins) -> list[Resource]:
        return [Service(resource.service_name, action=["stop", "disable"]), Package("jenkins", action="remove")]


@provider("jenkins", name=const.ProviderKind.debian)
class DebianJenkinsHandler(JenkinsPackageHandler):
    platform_family = "debian"


@provider("jenkins", name=const.ProviderKind.rhel)
class RhelJenkinsHandler(JenkinsPackageHandler):
    platform_family = "rhel"
