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
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from typing import Optional

from jenkinsconf import config, const
from jenkinsconf.api import JenkinsAPI
from jenkinsconf.exceptions import StateReadError
from jenkinsconf.handler import HandlerContext, ResourceHandler, provider
from jenkinsconf.jenkins.execute import Cli
from jenkinsconf.jenkins.server import java_binary
from jenkinsconf.resources import Field, Resource, from_config, lazy, resource, subresource
from jenkinsconf.std.execute import Execute
from jenkinsconf.std.files import Directory, File, RemoteFile, Template
from jenkinsconf.std.services import Service
from jenkinsconf.std.users import Group, User

LOGGER = logging.getLogger(__name__)

DUMB_SLAVE = "hudson.slaves.DumbSlave$DescriptorImpl"

# The elements of the config.xml of a node and the keys of the node data they are compared with
NODE_CONFIG_KEYS = {
    "name": "name",
    "description": "nodeDescription",
    "remoteFS": "remoteFS",
    "numExecutors": "numExecutors",
    "mode": "mode",
    "label": "labelString",
}


def _server_url(res: Resource) -> Optional[str]:
    if res.parent is not None:
        return res.parent.url
    return config.node_server_url.get()


def _description(res: Resource) -> Optional[str]:
    description = config.node_description.get()
    if description is None and res.run_context is not None:
        return res.run_context.facts.node_description()
    return description


def _jnlp_secret(res: Resource) -> str:
    assert isinstance(res, Node)
    return res.api().jnlp_secret(res.node_name)


@subresource("node", parent_type="jenkins")
@resource("jenkins_node")
class Node(Resource):
    """
    A Jenkins agent on this machine, registered with a Jenkins server. The parent server is optional, without it the
    server url comes from the configuration.
    """

    fields = (
        Field("node_name", str, default=lazy(lambda r: r.name.split("::")[-1])),
        Field("path", str, default=from_config(config.node_home)),
        Field("log_path", str, default=from_config(config.node_log_dir)),
        Field("description", str, default=lazy(_description)),
        Field("user", str, default=from_config(config.node_user)),
        Field("group", str, default=from_config(config.node_group)),
        Field("service_name", str, default=lazy(lambda r: f"jenkins-slave-{r.node_name}")),
        Field("server_url", str, default=lazy(_server_url), required=True),
        Field("server_username", str, default=from_config(config.node_server_username)),
        Field("server_password", str, default=from_config(config.node_server_password)),
        Field("jnlp_secret", str, default=lazy(_jnlp_secret)),
        Field("executors", int, default=from_config(config.node_executors)),
        Field("mode", str, default=from_config(config.node_mode), choices=("normal", "exclusive")),
        Field("labels", list, default=lazy(lambda r: list(config.node_labels.get()))),
        Field("auto_labels", bool, default=True),
        Field("availability", str, default=from_config(config.node_availability), choices=("always", "demand")),
        Field("jvm_options", str, default=from_config(config.node_jvm_options)),
        Field("java_home", str, default=from_config(config.server_java_home)),
        # only used when availability is demand
        Field("in_demand_delay", int, default=from_config(config.node_in_demand_delay)),
        Field("idle_delay", int, default=from_config(config.node_idle_delay)),
        Field("env", dict, default=lazy(lambda r: dict(config.node_env.get()))),
        Field("winsw_url", str, default=from_config(config.node_winsw_url)),
    )
    allowed_actions = ("create", "delete", "connect", "disconnect", "online", "offline")
    default_action = "create"

    @property
    def slave_jar(self) -> str:
        return os.path.join(self.path, "slave.jar")

    @property
    def slave_exe(self) -> str:
        return os.path.join(self.path, "jenkins-slave.exe")

    def api(self) -> JenkinsAPI:
        http_client = self.run_context.http_client if self.run_context is not None else None
        return JenkinsAPI(self.server_url, self.server_username, self.server_password, http_client=http_client)

    def all_labels(self) -> list[str]:
        """
        The labels of the node, extended with labels that describe the platform when auto_labels is set
        """
        labels = list(self.labels)
        if self.auto_labels and self.run_context is not None:
            labels += self.run_context.facts.auto_labels()
        result: list[str] = []
        for label in labels:
            if label not in result:
                result.append(label)
        return result


@subresource("node_ssh", parent_type="jenkins")
@resource("jenkins_node_ssh")
class SshNode(Node):
    """
    A Jenkins agent that the server starts over ssh
    """

    fields = (
        Field("ssh_host", str, default=from_config(config.node_ssh_host)),
        Field("ssh_port", int, default=from_config(config.node_ssh_port)),
        Field("ssh_user", str, default=lazy(lambda r: config.node_ssh_user.get() or r.user)),
        Field("ssh_password", str, default=from_config(config.node_ssh_password)),
        Field("ssh_private_key", str, default=from_config(config.node_ssh_private_key)),
        Field("ssh_shell", str, default=from_config(config.node_shell)),
        Field("server_pubkey", str, required=True),
    )


def node_config_differs(document: str, node_data: Mapping[str, object]) -> bool:
    """
    Compare the config.xml of a registered node with the node data it should have
    """
    try:
        root = ET.fromstring(document)
    except ET.ParseError as e:
        raise StateReadError("The config.xml of the node is not valid XML", cause=e)
    for tag, key in NODE_CONFIG_KEYS.items():
        element = root.find(tag)
        current = (element.text or "") if element is not None else None
        if current != (node_data[key] or ""):
            LOGGER.debug("Node %s differs in %s: %r != %r", node_data["name"], tag, current, node_data[key])
            return True
    return False


@provider("jenkins_node", name=const.ProviderKind.generic)
class NodeHandler(ResourceHandler):
    """
    Creates the account and the directory of the node, registers it with the server and runs the agent as a service
    """

    def load_current_state(self, ctx: HandlerContext, resource: Resource) -> Optional[str]:
        """
        The config.xml of the node on the server, None when the node is not registered
        """
        assert isinstance(resource, Node)
        if ctx.action not in ("create", "delete"):
            return None
        return resource.api().node_config(resource.node_name)

    def account_steps(self, resource: Node) -> list[Resource]:
        return [
            Group(resource.group),
            User(resource.user, group=resource.group, home=resource.path, comment="Jenkins CI node"),
        ]

    def directory_steps(self, resource: Node) -> list[Resource]:
        return [Directory(resource.path, owner=resource.user, group=resource.group, recursive=True)]

    def launcher_data(self, resource: Node) -> dict[str, object]:
        return {"stapler-class": "hudson.slaves.JNLPLauncher"}

    def node_data(self, resource: Node) -> dict[str, object]:
        node_properties: dict[str, object] = {"stapler-class-bag": "true"}
        if resource.env:
            node_properties["hudson-slaves-EnvironmentVariablesNodeProperty"] = {
                "env": [{"key": key, "value": value} for key, value in resource.env.items()],
            }

        if resource.availability == "always":
            retention_strategy: dict[str, str] = {"stapler-class": "hudson.slaves.RetentionStrategy$Always"}
        else:
            retention_strategy = {
                "stapler-class": "hudson.slaves.RetentionStrategy$Demand",
                "inDemandDelay": str(resource.in_demand_delay),
                "idleDelay": str(resource.idle_delay),
            }

        return {
            "name": resource.node_name,
            "nodeDescription": resource.description,
            "numExecutors": str(resource.executors),
            "remoteFS": resource.path,
            "labelString": " ".join(resource.all_labels()),
            "mode": resource.mode.upper(),
            "type": DUMB_SLAVE,
            "retentionStrategy": retention_strategy,
            "nodeProperties": node_properties,
            "launcher": self.launcher_data(resource),
        }

    def register(self, ctx: HandlerContext, resource: Node, current: Optional[str]) -> None:
        api = resource.api()
        node_data = self.node_data(resource)
        if current is None:
            ctx.add_change("registered", desired=True, current=False)
            self.converge_by(
                ctx,
                f"register Jenkins node {resource.node_name} at {api.url}",
                lambda: api.create_node(resource.node_name, node_data),
            )
        elif node_config_differs(current, node_data):
            ctx.add_change("config", desired=node_data)
            self.converge_by(
                ctx,
                f"update the configuration of Jenkins node {resource.node_name}",
                lambda: api.update_node(resource.node_name, node_data),
            )

    def unit_path(self, resource: Node) -> str:
        return os.path.join(config.systemd_unit_dir.get(), f"{resource.service_name}.service")

    def agent_steps(self, resource: Node) -> list[Resource]:
        service = Service(resource.service_name, action=["enable", "start"])
        jar = RemoteFile(
            resource.slave_jar,
            source=resource.api().url + "/jnlpJars/slave.jar",
            owner=resource.user,
            group=resource.group,
        )
        jar.notifies("restart", service)
        unit = Template(
            self.unit_path(resource),
            source="jenkins-node.service.j2",
            mode="644",
            variables={
                "node_name": resource.node_name,
                "user": resource.user,
                "group": resource.group,
                "path": resource.path,
                "env": resource.env,
                "java": java_binary(resource.java_home),
                "jvm_options": resource.jvm_options,
                "slave_jar": resource.slave_jar,
                "server_url": resource.api().url,
                "jnlp_secret": resource.jnlp_secret,
            },
        )
        unit.notifies("restart", service)
        return [jar, unit, service]

    def action_create(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Node)
        self.run_inline(ctx, self.account_steps(resource) + self.directory_steps(resource))
        self.register(ctx, resource, current)  # type: ignore[arg-type]
        if ctx.is_dry_run() and current is None:
            ctx.info("Would configure the agent of %(node)s once it is registered", node=resource.node_name)
            return
        agent_steps = self.agent_steps(resource)
        if agent_steps:
            self.run_inline(ctx, agent_steps)

    def cli(self, ctx: HandlerContext, resource: Node, command: str) -> None:
        self.run_inline(ctx, [Cli(f"{command} {resource.node_name}", url=resource.server_url, path=resource.path)])

    def action_delete(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Node)
        if current is None:
            ctx.debug("Jenkins node %(node)s is not registered", node=resource.node_name)
            return
        self.cli(ctx, resource, "delete-node")

    def action_connect(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Node)
        self.cli(ctx, resource, "connect-node")

    def action_disconnect(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Node)
        self.cli(ctx, resource, "disconnect-node")

    def action_online(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Node)
        self.cli(ctx, resource, "online-node")

    def action_offline(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Node)
        self.cli(ctx, resource, "offline-node")


@provider("jenkins_node_ssh", name=const.ProviderKind.ssh)
class SshNodeHandler(NodeHandler):
    """
    The server connects to an ssh node itself, there is no agent service
    """

    def account_steps(self, resource: Node) -> list[Resource]:
        assert isinstance(resource, SshNode)
        return [
            Group(resource.group),
            User(
                resource.user,
                group=resource.group,
                home=resource.path,
                shell=resource.ssh_shell,
                comment="Jenkins CI node",
            ),
        ]

    def directory_steps(self, resource: Node) -> list[Resource]:
        assert isinstance(resource, SshNode)
        ssh_dir = os.path.join(resource.path, const.SSH_DIR)
        return super().directory_steps(resource) + [
            Directory(ssh_dir, owner=resource.user, group=resource.group, mode="700"),
            File(
                os.path.join(ssh_dir, "authorized_keys"),
                content=resource.server_pubkey,
                owner=resource.user,
                group=resource.group,
                mode="600",
            ),
        ]

    def launcher_data(self, resource: Node) -> dict[str, object]:
        assert isinstance(resource, SshNode)
        return {
            "stapler-class": "hudson.plugins.sshslaves.SSHLauncher",
            "host": resource.ssh_host,
            "port": str(resource.ssh_port),
            "username": resource.ssh_user,
            "password": resource.ssh_password,
            "privatekey": resource.ssh_private_key,
            "jvmOptions": resource.jvm_options,
        }

    def agent_steps(self, resource: Node) -> list[Resource]:
        return []


@provider("jenkins_node", name=const.ProviderKind.windows)
class WindowsNodeHandler(NodeHandler):
    """
    Runs the agent as a windows service through the windows service wrapper
    """

    def available(self, resource: Resource) -> bool:
        return self.run_context.facts.os == "windows"

    def account_steps(self, resource: Node) -> list[Resource]:
        return []

    def directory_steps(self, resource: Node) -> list[Resource]:
        return [Directory(resource.path, recursive=True)]

    def service_installed(self, resource: Node) -> bool:
        _, _, rc = self._io.run("sc.exe", ["query", resource.service_name])
        return rc == 0

    def agent_steps(self, resource: Node) -> list[Resource]:
        service = Service(resource.service_name, action=["enable", "start"])
        jar = RemoteFile(resource.slave_jar, source=resource.api().url + "/jnlpJars/slave.jar")
        jar.notifies("restart", service)
        wrapper = RemoteFile(resource.slave_exe, source=resource.winsw_url)
        wrapper_config = Template(
            os.path.join(resource.path, "jenkins-slave.xml"),
            source="jenkins-slave.xml.j2",
            variables={
                "service_name": resource.service_name,
                "node_name": resource.node_name,
                "java": java_binary(resource.java_home),
                "jvm_options": resource.jvm_options,
                "slave_jar": resource.slave_jar,
                "server_url": resource.api().url,
                "jnlp_secret": resource.jnlp_secret,
                "log_path": resource.log_path,
            },
        )
        wrapper_config.notifies("restart", service)

        steps: list[Resource] = [jar, wrapper, wrapper_config]
        if not self.service_installed(resource):
            steps.append(Execute(f'"{resource.slave_exe}" install', cwd=resource.path))
        return steps + [service]
