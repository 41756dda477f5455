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

import re
from enum import Enum


class ResourceState(str, Enum):
    skipped = "skipped"  # The provider raised SkipResource
    dry = "dry"
    deployed = "deployed"
    failed = "failed"
    deploying = "deploying"
    available = "available"


class Change(str, Enum):
    nochange = "nochange"
    created = "created"
    purged = "purged"
    updated = "updated"


class Timing(str, Enum):
    """When a notification is executed"""

    immediate = "immediate"  # right after the notifying resource converged
    delayed = "delayed"  # once, at the end of the run


class Position(str, Enum):
    before = "before"
    after = "after"


class ProviderKind(str, Enum):
    """
    The closed set of provider variants. Each resource type registers at most one handler per variant.
    """

    generic = "generic"
    debian = "debian"
    rhel = "rhel"
    windows = "windows"
    ssh = "ssh"
    nginx = "nginx"
    apache = "apache"
    systemd = "systemd"


# The action that does nothing, every resource accepts it
ACTION_NOTHING = "nothing"

ENVIRON_FORCE_TTY = "JENKINSCONF_FORCE_TTY"
ENV_PREFIX = "JENKINSCONF"

# Jenkins layout relative to the home directory
PLUGINS_DIR = "plugins"
CONFIG_FRAGMENTS_DIR = "config.d"
CREDENTIALS_FRAGMENTS_DIR = "credentials.d"
JOBS_DIR = "jobs"
SSH_DIR = ".ssh"
CONFIG_FILE = "config.xml"
CREDENTIALS_FILE = "credentials.xml"

PLUGIN_EXTENSION = ".jpi"
PINNED_SUFFIX = ".pinned"
LATEST = "latest"

CONFIG_HEADER = "<?xml version='1.0' encoding='UTF-8'?>\n<hudson>"
CONFIG_FOOTER = "</hudson>"

CREDENTIALS_HEADER = (
    "<?xml version='1.0' encoding='UTF-8'?>\n"
    "<com.cloudbees.plugins.credentials.SystemCredentialsProvider plugin=\"credentials\">\n"
    "  <domainCredentialsMap class=\"hudson.util.CopyOnWriteMap$Hash\">\n"
    "    <entry>\n"
    "      <com.cloudbees.plugins.credentials.domains.Domain>\n"
    "        <specifications/>\n"
    "      </com.cloudbees.plugins.credentials.domains.Domain>\n"
    "      <java.util.concurrent.CopyOnWriteArrayList>"
)
CREDENTIALS_FOOTER = (
    "      </java.util.concurrent.CopyOnWriteArrayList>\n"
    "    </entry>\n"
    "  </domainCredentialsMap>\n"
    "</com.cloudbees.plugins.credentials.SystemCredentialsProvider>"
)

# Jenkins remote API
CRUMB_ISSUER_PATH = "/crumbIssuer/api/json"
JNLP_SECRET_REGEX = re.compile(r"[0-9a-f]{64}")
PLUGIN_VERSION_REGEX = re.compile(r"^Plugin-Version:\s*(.+)$", re.MULTILINE)

# HTTP status codes that indicate the server is up while polling for availability
SERVER_UP_STATUS_CODES = frozenset({200, 401, 403})
SERVER_POLL_INTERVAL = 1

NAME_RESOURCE_ACTION_LOGGER = "jenkinsconf.resource_action"
