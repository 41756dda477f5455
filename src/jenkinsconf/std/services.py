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

from jenkinsconf import const
from jenkinsconf.exceptions import ConvergeError
from jenkinsconf.handler import HandlerContext, ResourceHandler, provider
from jenkinsconf.resources import Field, Resource, resource

LOGGER = logging.getLogger(__name__)


@resource("service")
class Service(Resource):
    """
    A service of the service supervisor of the platform. The name is the name of the unit or windows service.
    """

    fields = (Field("service_name", str),)
    allowed_actions = ("enable", "disable", "start", "stop", "restart", "reload")
    default_action = const.ACTION_NOTHING

    @property
    def unit(self) -> str:
        return self.service_name if self.service_name is not None else self.name


class ServiceState:
    def __init__(self, enabled: bool, running: bool) -> None:
        self.enabled = enabled
        self.running = running

    def __repr__(self) -> str:
        return f"ServiceState(enabled={self.enabled}, running={self.running})"


class ServiceHandler(ResourceHandler):
    """
    The actions shared by the service supervisor variants. A variant implements the status checks and :meth:`control`.
    """

    def is_enabled(self, unit: str) -> bool:
        raise NotImplementedError()

    def is_running(self, unit: str) -> bool:
        raise NotImplementedError()

    def control(self, resource: Service, command: str) -> None:
        raise NotImplementedError()

    def load_current_state(self, ctx: HandlerContext, resource: Resource) -> ServiceState:
        assert isinstance(resource, Service)
        return ServiceState(enabled=self.is_enabled(resource.unit), running=self.is_running(resource.unit))

    def action_enable(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Service) and isinstance(current, ServiceState)
        if not current.enabled:
            ctx.add_change("enabled", desired=True, current=False)
            self.converge_by(ctx, f"enable service {resource.unit}", lambda: self.control(resource, "enable"))

    def action_disable(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Service) and isinstance(current, ServiceState)
        if current.enabled:
            ctx.add_change("enabled", desired=False, current=True)
            self.converge_by(ctx, f"disable service {resource.unit}", lambda: self.control(resource, "disable"))

    def action_start(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Service) and isinstance(current, ServiceState)
        if not current.running:
            ctx.add_change("running", desired=True, current=False)
            self.converge_by(ctx, f"start service {resource.unit}", lambda: self.control(resource, "start"))

    def action_stop(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Service) and isinstance(current, ServiceState)
        if current.running:
            ctx.add_change("running", desired=False, current=True)
            self.converge_by(ctx, f"stop service {resource.unit}", lambda: self.control(resource, "stop"))

    def action_restart(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Service)
        self.converge_by(ctx, f"restart service {resource.unit}", lambda: self.control(resource, "restart"))

    def action_reload(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Service)
        self.converge_by(ctx, f"reload service {resource.unit}", lambda: self.control(resource, "reload"))


@provider("service", name=const.ProviderKind.systemd)
class SystemdServiceHandler(ServiceHandler):
    def available(self, resource: Resource) -> bool:
        return self.run_context.facts.init_system == "systemd"

    def is_enabled(self, unit: str) -> bool:
        _, _, rc = self._io.run("systemctl", ["is-enabled", unit])
        return rc == 0

    def is_running(self, unit: str) -> bool:
        _, _, rc = self._io.run("systemctl", ["is-active", unit])
        return rc == 0

    def control(self, resource: Service, command: str) -> None:
        if command in ("enable", "restart", "start"):
            # pick up unit files that were written in this run
            self._io.run("systemctl", ["daemon-reload"])
        stdout, stderr, rc = self._io.run("systemctl", [command, resource.unit])
        if rc != 0:
            raise ConvergeError(f"systemctl {command} {resource.unit} failed: {stderr or stdout}", resource.id)


@provider("service", name=const.ProviderKind.windows)
class WindowsServiceHandler(ServiceHandler):
    def available(self, resource: Resource) -> bool:
        return self.run_context.facts.os == "windows"

    def _query(self, unit: str, what: str) -> str:
        stdout, _, rc = self._io.run("sc.exe", [what, unit])
        if rc != 0:
            return ""
        return stdout

    def is_enabled(self, unit: str) -> bool:
        output = self._query(unit, "qc")
        return "START_TYPE" in output and "DISABLED" not in output and "DEMAND_START" not in output

    def is_running(self, unit: str) -> bool:
        return "RUNNING" in self._query(unit, "query")

    def control(self, resource: Service, command: str) -> None:
        if command == "restart":
            self.control(resource, "stop")
            self.control(resource, "start")
            return
        if command == "reload":
            raise ConvergeError("Windows services can not be reloaded", resource.id)
        args = {
            "enable": ["config", resource.unit, "start=", "auto"],
            "disable": ["config", resource.unit, "start=", "disabled"],
            "start": ["start", resource.unit],
            "stop": ["stop", resource.unit],
        }[command]
        stdout, stderr, rc = self._io.run("sc.exe", args)
        if rc != 0:
            raise ConvergeError(f"sc.exe {' '.join(args)} failed: {stderr or stdout}", resource.id)
