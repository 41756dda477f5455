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
from typing import Optional

from jenkinsconf import const
from jenkinsconf.exceptions import ConvergeError
from jenkinsconf.handler import HandlerContext, ResourceHandler, provider
from jenkinsconf.resources import Field, Resource, resource

LOGGER = logging.getLogger(__name__)


@resource("package")
class Package(Resource):
    """
    An os package. Without a version any installed version is accepted by ``install``.
    """

    fields = (Field("version", str),)
    allowed_actions = ("install", "upgrade", "remove")
    default_action = "install"


class PackageHandler(ResourceHandler):
    """
    The steps shared by the package manager variants. A variant implements :meth:`installed_version`,
    :meth:`candidate_version`, :meth:`install` and :meth:`remove`.
    """

    platform_family: str

    def available(self, resource: Resource) -> bool:
        return self.run_context.facts.platform_family == self.platform_family

    def installed_version(self, name: str) -> Optional[str]:
        raise NotImplementedError()

    def candidate_version(self, name: str) -> Optional[str]:
        raise NotImplementedError()

    def install(self, name: str, version: Optional[str]) -> None:
        raise NotImplementedError()

    def remove(self, name: str) -> None:
        raise NotImplementedError()

    def load_current_state(self, ctx: HandlerContext, resource: Resource) -> Optional[str]:
        return self.installed_version(resource.name)

    def action_install(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Package)
        if current is not None and (resource.version is None or current == resource.version):
            ctx.debug("%(name)s %(version)s is installed", name=resource.name, version=current)
            return
        ctx.add_change("version", desired=resource.version, current=current)
        self.converge_by(
            ctx,
            f"install {resource.name} {resource.version or ''}".rstrip(),
            lambda: self.install(resource.name, resource.version),
        )

    def action_upgrade(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Package)
        desired = resource.version if resource.version is not None else self.candidate_version(resource.name)
        if desired is None:
            raise ConvergeError(f"No candidate version of {resource.name} is available", resource.id)
        if current == desired:
            return
        ctx.add_change("version", desired=desired, current=current)
        self.converge_by(ctx, f"upgrade {resource.name} to {desired}", lambda: self.install(resource.name, desired))

    def action_remove(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        if current is None:
            return
        ctx.add_change("version", desired=None, current=current)
        ctx.set_purged()
        self.converge_by(ctx, f"remove {resource.name}", lambda: self.remove(resource.name))


@provider("package", name=const.ProviderKind.debian)
class DebianPackageHandler(PackageHandler):
    """
    Packages on debian and ubuntu, through dpkg-query and apt-get
    """

    platform_family = "debian"
    env = {"DEBIAN_FRONTEND": "noninteractive"}

    def installed_version(self, name: str) -> Optional[str]:
        stdout, _, rc = self._io.run("dpkg-query", ["-W", "-f=${Status} ${Version}", name])
        if rc != 0:
            return None
        # install ok installed 2.401.1
        parts = stdout.split()
        if len(parts) < 4 or parts[2] != "installed":
            return None
        return parts[3]

    def candidate_version(self, name: str) -> Optional[str]:
        stdout, _, rc = self._io.run("apt-cache", ["policy", name])
        if rc != 0:
            return None
        for line in stdout.splitlines():
            line = line.strip()
            if line.startswith("Candidate:"):
                candidate = line.split(":", 1)[1].strip()
                return None if candidate == "(none)" else candidate
        return None

    def install(self, name: str, version: Optional[str]) -> None:
        spec = f"{name}={version}" if version is not None else name
        args = ["-q", "-y", "-o", "Dpkg::Options::=--force-confold", "install", spec]
        stdout, stderr, rc = self._io.run("apt-get", args, env=self.env)
        if rc != 0:
            raise ConvergeError(f"apt-get install {spec} failed: {stderr or stdout}")

    def remove(self, name: str) -> None:
        stdout, stderr, rc = self._io.run("apt-get", ["-q", "-y", "remove", name], env=self.env)
        if rc != 0:
            raise ConvergeError(f"apt-get remove {name} failed: {stderr or stdout}")


@provider("package", name=const.ProviderKind.rhel)
class RhelPackageHandler(PackageHandler):
    """
    Packages on red hat based platforms, through rpm and yum
    """

    platform_family = "rhel"

    def installed_version(self, name: str) -> Optional[str]:
        stdout, _, rc = self._io.run("rpm", ["-q", "--qf", "%{VERSION}-%{RELEASE}", name])
        if rc != 0:
            return None
        return stdout.strip()

    def candidate_version(self, name: str) -> Optional[str]:
        stdout, _, rc = self._io.run("yum", ["-q", "list", "available", "--showduplicates", name])
        if rc != 0:
            return None
        versions = [line.split()[1] for line in stdout.splitlines() if line.startswith(name + ".") and len(line.split()) > 1]
        return versions[-1] if versions else None

    def install(self, name: str, version: Optional[str]) -> None:
        spec = f"{name}-{version}" if version is not None else name
        stdout, stderr, rc = self._io.run("yum", ["-d0", "-e0", "-y", "install", spec])
        if rc != 0:
            raise ConvergeError(f"yum install {spec} failed: {stderr or stdout}")

    def remove(self, name: str) -> None:
        stdout, stderr, rc = self._io.run("yum", ["-d0", "-e0", "-y", "remove", name])
        if rc != 0:
            raise ConvergeError(f"yum remove {name} failed: {stderr or stdout}")
