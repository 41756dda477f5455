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

from jenkinsconf import config, const
from jenkinsconf.handler import HandlerContext, provider
from jenkinsconf.jenkins.server import java_binary
from jenkinsconf.resources import Field, Resource, from_config, from_parent, lazy, resource, subresource
from jenkinsconf.std.execute import Execute, ExecuteHandlerBase
from jenkinsconf.std.files import Directory, RemoteFile

LOGGER = logging.getLogger(__name__)


@subresource("execute", parent_type="jenkins")
@resource("jenkins_execute")
class JenkinsExecute(Execute):
    """
    Run a command on the machine of a Jenkins server. The parent is optional.
    """


@provider("jenkins_execute", name=const.ProviderKind.generic)
class JenkinsExecuteHandler(ExecuteHandlerBase):
    pass


def _server_java_home(res: Resource) -> object:
    if res.parent is not None:
        return res.parent.java_home
    return config.server_java_home.get()


@subresource("cli", parent_type="jenkins")
@resource("jenkins_cli")
class Cli(JenkinsExecute):
    """
    Run a jenkins-cli command against a server, for example ``server.child("cli", "safe-restart")``. The cli jar is
    downloaded from the server to path when it is missing.
    """

    fields = (
        Field("url", str, default=from_parent("url"), required=True),
        Field("path", str, default=from_parent("path"), required=True),
        Field("cwd", str, default=lazy(lambda r: r.path)),
        Field("java_home", str, default=lazy(_server_java_home)),
        Field("jvm_options", str, default=from_config(config.cli_jvm_options)),
        Field("key_file", str, default=from_config(config.cli_key_file)),
    )

    @property
    def cli_jar(self) -> str:
        return os.path.join(self.path, "jenkins-cli.jar")

    def shell_command(self) -> str:
        java = java_binary(self.java_home)
        parts = [f'"{java}"' if self.java_home else java]
        if self.jvm_options:
            parts.append(self.jvm_options)
        parts += ["-jar", self.cli_jar]
        if self.key_file:
            parts += ["-i", self.key_file]
        parts += ["-s", self.url, self.command]
        return " ".join(parts)


@provider("jenkins_cli", name=const.ProviderKind.generic)
class CliHandler(ExecuteHandlerBase):
    def action_run(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Cli)
        self.run_inline(
            ctx,
            [
                Directory(resource.path, recursive=True),
                RemoteFile(
                    resource.cli_jar,
                    source=resource.url.rstrip("/") + "/jnlpJars/jenkins-cli.jar",
                    action="create_if_missing",
                ),
            ],
        )
        super().action_run(ctx, resource, current)
