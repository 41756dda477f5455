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
import platform
import shutil
import socket
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict

LOGGER = logging.getLogger(__name__)

# ID and ID_LIKE values of /etc/os-release per platform family
PLATFORM_FAMILIES: dict[str, set[str]] = {
    "debian": {"debian", "ubuntu", "linuxmint", "raspbian"},
    "rhel": {"rhel", "centos", "fedora", "rocky", "almalinux", "ol", "amzn"},
}


def parse_os_release(content: str) -> dict[str, str]:
    """
    Parse the key=value lines of an os-release file
    """
    result = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        result[key] = value.strip().strip('"').strip("'")
    return result


def platform_family_for(os_release: dict[str, str]) -> str:
    candidates = [os_release.get("ID", "")] + os_release.get("ID_LIKE", "").split()
    for candidate in candidates:
        for family, members in PLATFORM_FAMILIES.items():
            if candidate in members:
                return family
    return "unknown"


class Facts(BaseModel):
    """
    The facts of the platform the run converges
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)

    os: str
    platform: str
    platform_family: str
    platform_version: str = ""
    kernel_name: str = ""
    kernel_release: str = ""
    machine: str = ""
    hostname: str = ""
    fqdn: str = ""
    init_system: Optional[str] = None
    tags: list[str] = []

    @classmethod
    def detect(cls, os_release_path: str = "/etc/os-release") -> "Facts":
        uname = platform.uname()
        system = uname.system.lower()
        if system == "windows":
            return cls(
                os="windows",
                platform="windows",
                platform_family="windows",
                platform_version=uname.version,
                kernel_name=uname.system,
                kernel_release=uname.release,
                machine=uname.machine,
                hostname=uname.node,
                fqdn=socket.getfqdn(),
            )

        os_release: dict[str, str] = {}
        if os.path.exists(os_release_path):
            with open(os_release_path, "r") as fh:
                os_release = parse_os_release(fh.read())
        else:
            LOGGER.debug("%s does not exist, platform facts are incomplete", os_release_path)

        init_system = "systemd" if shutil.which("systemctl") is not None and os.path.isdir("/run/systemd/system") else None
        return cls(
            os=system,
            platform=os_release.get("ID", system),
            platform_family=platform_family_for(os_release) if os_release else "unknown",
            platform_version=os_release.get("VERSION_ID", ""),
            kernel_name=uname.system,
            kernel_release=uname.release,
            machine=uname.machine,
            hostname=uname.node,
            fqdn=socket.getfqdn(),
            init_system=init_system,
        )

    def auto_labels(self) -> list[str]:
        """
        Labels that help to target jobs to nodes of this platform
        """
        labels = [
            self.platform,
            self.platform_family,
            self.platform_version,
            f"{self.platform}-{self.platform_version}",
            self.machine,
            self.os,
            self.kernel_release,
        ] + self.tags
        result: list[str] = []
        for label in labels:
            if label and label not in result:
                result.append(label)
        return result

    def node_description(self) -> str:
        return (
            f"{self.platform} {self.platform_version} [{self.kernel_name} {self.kernel_release} {self.machine}] "
            f"slave on {self.hostname}"
        )
