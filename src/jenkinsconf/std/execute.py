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

from jenkinsconf import const
from jenkinsconf.exceptions import ConvergeError
from jenkinsconf.handler import HandlerContext, ResourceHandler, provider
from jenkinsconf.resources import Field, Resource, lazy, resource

LOGGER = logging.getLogger(__name__)


@resource("execute")
class Execute(Resource):
    """
    Run a shell command. The name is the command unless command is set. Running a command always counts as a change,
    unless creates names a path that already exists.
    """

    fields = (
        Field("command", str, default=lazy(lambda r: r.name)),
        Field("cwd", str),
        Field("timeout", int),
        Field("environment", dict, default={}),
        Field("creates", str),
        Field("returns", list, default=[0]),
        Field("on_output", Callable),
    )
    allowed_actions = ("run",)
    default_action = "run"

    def shell_command(self) -> str:
        return self.command


class ExecuteHandlerBase(ResourceHandler):
    def shell(self) -> tuple[str, list[str]]:
        if self.run_context.facts.os == "windows":
            return "cmd.exe", ["/c"]
        return "/bin/sh", ["-c"]

    def run_command(self, ctx: HandlerContext, resource: Execute, command: str) -> str:
        """
        Run the command and hand its output to the on_output callback of the resource.

        :return: The stdout of the command
        """
        shell, args = self.shell()
        stdout, stderr, rc = self._io.run(
            shell, args + [command], env=resource.environment or None, cwd=resource.cwd, timeout=resource.timeout
        )
        ctx.debug("%(command)s exited with %(rc)d", command=command, rc=rc, stdout=stdout, stderr=stderr)
        if rc not in resource.returns:
            raise ConvergeError(f"{command} exited with {rc}: {stderr or stdout}", resource.id)
        if resource.on_output is not None:
            resource.on_output(stdout)
        return stdout

    def action_run(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Execute)
        if resource.creates is not None and self._io.file_exists(resource.creates):
            ctx.debug("%(path)s exists, not running %(command)s", path=resource.creates, command=resource.command)
            return
        command = resource.shell_command()
        self.converge_by(ctx, f"run {command}", lambda: self.run_command(ctx, resource, command))


@provider("execute", name=const.ProviderKind.generic)
class ExecuteHandler(ExecuteHandlerBase):
    pass
