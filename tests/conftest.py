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
import base64
import hashlib
import json
import os
import shlex
from collections.abc import Iterator, Mapping, Sequence
from configparser import ConfigParser
from dataclasses import dataclass
from typing import Callable, Optional, Union

import pytest

import jenkinsconf
import jenkinsconf.jenkins  # noqa: F401
from jenkinsconf import config
from jenkinsconf.facts import Facts
from jenkinsconf.http import HttpClient, HttpResponse
from jenkinsconf.io.local import LocalIO
from jenkinsconf.runner import RunContext
from jenkinsconf.updatecenter import UpdateCenter

JENKINS_URL = "http://jenkins.example.com:8080"
CORE_VERSION = "2.440.1"
PLUGIN_BODIES = {
    "git": b"git plugin archive",
    "scm-api": b"scm-api plugin archive",
    "credentials": b"credentials plugin archive",
}
SECRET = "0123456789abcdef" * 4

JNLP = f"""<?xml version="1.0" encoding="UTF-8"?>
<jnlp codebase="{JENKINS_URL}/computer/node1/" spec="1.0+">
  <information><title>Agent for node1</title></information>
  <application-desc main-class="hudson.remoting.jnlp.Main">
    <argument>-headless</argument>
    <argument>{SECRET}</argument>
    <argument>node1</argument>
  </application-desc>
</jnlp>
"""


def plugin_url(name: str, version: str) -> str:
    return f"https://updates.jenkins.io/download/plugins/{name}/{version}/{name}.hpi"


def feed_sha1(body: bytes) -> str:
    return base64.b64encode(hashlib.sha1(body).digest()).decode()


def update_center_document() -> str:
    feed = {
        "connectionCheckUrl": "http://www.google.com/",
        "core": {"name": "core", "version": CORE_VERSION, "sha1": feed_sha1(b"jenkins war")},
        "plugins": {
            "git": {
                "name": "git",
                "version": "5.2.1",
                "sha1": feed_sha1(PLUGIN_BODIES["git"]),
                "dependencies": [
                    {"name": "scm-api", "optional": False, "version": "676.v886669a_199a_a_"},
                    {"name": "credentials", "optional": True, "version": "1311.vcf0a_900b_37c2"},
                ],
            },
            "scm-api": {
                "name": "scm-api",
                "version": "683.vb_16722fb_b_80b_",
                "sha1": feed_sha1(PLUGIN_BODIES["scm-api"]),
                "dependencies": [],
            },
            "credentials": {
                "name": "credentials",
                "version": "1319.v7eb_51b_3a_c97b_",
                "sha1": feed_sha1(PLUGIN_BODIES["credentials"]),
                "dependencies": [],
            },
        },
    }
    return "updateCenter.post(\n" + json.dumps(feed) + "\n);"


@dataclass
class Request:
    url: str
    method: str
    body: Union[str, bytes, None]
    headers: dict[str, str]
    username: Optional[str]


class FakeHttpClient(HttpClient):
    """
    Answers requests from a map of (method, url) to responses. Unknown urls return a 404. A list of responses is
    handed out one by one, the last one is repeated.
    """

    def __init__(self) -> None:
        super().__init__()
        self.responses: dict[tuple[str, str], list[Union[HttpResponse, Exception]]] = {}
        self.requests: list[Request] = []

    def add(
        self,
        url: str,
        code: int = 200,
        body: Union[str, bytes] = b"",
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.responses.setdefault((method, url), []).append(HttpResponse(code, body, headers or {}))

    def add_error(self, url: str, error: Exception, method: str = "GET") -> None:
        self.responses.setdefault((method, url), []).append(error)

    def fetch(
        self,
        url: str,
        method: str = "GET",
        body: Union[str, bytes, None] = None,
        headers: Optional[Mapping[str, str]] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        follow_redirects: bool = True,
    ) -> HttpResponse:
        self.requests.append(Request(url, method, body, dict(headers or {}), username))
        queue = self.responses.get((method, url))
        if not queue:
            return HttpResponse(404)
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        return result

    def requested(self, url: str, method: str = "GET") -> int:
        return len([r for r in self.requests if r.url == url and r.method == method])


class FakeIO(LocalIO):
    """
    Works on the real filesystem, but simulates accounts, ownership, systemctl and other commands
    """

    def __init__(self) -> None:
        super().__init__()
        self.commands: list[list[str]] = []
        self.scripted: list[tuple[str, tuple[str, str, int]]] = []
        self.users: dict[str, dict[str, Union[int, str]]] = {}
        self.groups: dict[str, dict[str, Union[int, list[str]]]] = {}
        self.owners: dict[str, dict[str, str]] = {}
        self.enabled: set[str] = set()
        self.running: set[str] = set()

    def script(self, prefix: str, stdout: str = "", stderr: str = "", rc: int = 0) -> None:
        """
        Answer every command line that starts with prefix
        """
        self.scripted.insert(0, (prefix, (stdout, stderr, rc)))

    def ran(self, prefix: str) -> list[str]:
        lines = [shlex.join(cmd) for cmd in self.commands]
        return [line for line in lines if line.startswith(prefix)]

    def run(
        self,
        command: str,
        arguments: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> tuple[str, str, int]:
        cmd = [command] + list(arguments)
        self.commands.append(cmd)
        line = shlex.join(cmd)
        for prefix, result in self.scripted:
            if line.startswith(prefix):
                return result

        handler: Optional[Callable[[list[str]], tuple[str, str, int]]] = getattr(
            self, "_" + command.replace("-", "_").replace(".", "_"), None
        )
        if handler is not None:
            return handler(list(arguments))
        return "", "", 0

    def _options(self, arguments: list[str]) -> dict[str, str]:
        options = {}
        for flag, value in zip(arguments, arguments[1:]):
            if flag.startswith("-") and not value.startswith("-"):
                options[flag] = value
        return options

    def _groupadd(self, arguments: list[str]) -> tuple[str, str, int]:
        options = self._options(arguments[:-1])
        self.groups[arguments[-1]] = {"gid": int(options.get("-g", 2000 + len(self.groups))), "members": []}
        return "", "", 0

    def _useradd(self, arguments: list[str]) -> tuple[str, str, int]:
        options = self._options(arguments[:-1])
        group = options.get("-g", arguments[-1])
        if group not in self.groups:
            return "", f"group '{group}' does not exist", 6
        self.users[arguments[-1]] = {
            "uid": int(options.get("-u", 3000 + len(self.users))),
            "gid": self.groups[group]["gid"],
            "home": options.get("-d", f"/home/{arguments[-1]}"),
            "shell": options.get("-s", "/bin/sh"),
            "comment": options.get("-c", ""),
        }
        return "", "", 0

    def _systemctl(self, arguments: list[str]) -> tuple[str, str, int]:
        verb = arguments[0]
        unit = arguments[1] if len(arguments) > 1 else None
        if verb == "is-enabled":
            return ("enabled", "", 0) if unit in self.enabled else ("disabled", "", 1)
        if verb == "is-active":
            return ("active", "", 0) if unit in self.running else ("inactive", "", 3)
        if verb == "enable":
            self.enabled.add(unit)
        elif verb == "disable":
            self.enabled.discard(unit)
        elif verb in ("start", "restart"):
            self.running.add(unit)
        elif verb == "stop":
            self.running.discard(unit)
        return "", "", 0

    def get_user(self, name: str) -> Optional[dict[str, Union[int, str]]]:
        return self.users.get(name)

    def get_group(self, name: str) -> Optional[dict[str, Union[int, list[str]]]]:
        return self.groups.get(name)

    def group_name(self, gid: int) -> Union[int, str]:
        for name, group in self.groups.items():
            if group["gid"] == gid:
                return name
        return gid

    def chown(self, path: str, user: Optional[str] = None, group: Optional[str] = None) -> None:
        owner = self.owners.setdefault(path, {})
        if user is not None:
            owner["owner"] = user
        if group is not None:
            owner["group"] = group

    def file_stat(self, path: str) -> dict[str, Union[int, str]]:
        status = super().file_stat(path)
        status.update(self.owners.get(path, {}))
        return status

    def remove(self, path: str) -> None:
        super().remove(path)
        self.owners.pop(path, None)


@pytest.fixture(scope="session", autouse=True)
def running_tests() -> None:
    """
    Ensure the RUNNING_TESTS variable is True when running tests
    """
    jenkinsconf.RUNNING_TESTS = True


@pytest.fixture(autouse=True)
def jenkinsconf_config(tmp_path) -> Iterator[ConfigParser]:
    """
    A configuration that only contains what the tests set, with the systemd units written to a temporary directory
    """
    config.Config._reset()
    config.Config.load_config(main_cfg_file=str(tmp_path / "jenkinsconf.cfg"))
    unit_dir = tmp_path / "systemd"
    unit_dir.mkdir()
    config.Config.set("service", "unit_dir", str(unit_dir))
    config.Config.set("server", "host", "jenkins.example.com")
    config.Config.set("server", "log_dir", str(tmp_path / "log"))
    config.Config.set("node", "ssh_host", "node1.example.com")
    config.Config.set("proxy", "hostname", "ci.example.com")

    yield config.Config._get_instance()

    config.Config._reset()


@pytest.fixture
def jenkins_home(tmp_path) -> str:
    return str(tmp_path / "jenkins")


@pytest.fixture
def prepared_home(jenkins_home) -> str:
    """
    A home directory with the layout the server resource creates
    """
    for sub in ("plugins", "config.d", "credentials.d", "jobs"):
        os.makedirs(os.path.join(jenkins_home, sub))
    return jenkins_home


@pytest.fixture
def http_client() -> FakeHttpClient:
    client = FakeHttpClient()
    client.add(JENKINS_URL + "/", 200, "<html/>")
    client.add(f"https://updates.jenkins.io/download/war/{CORE_VERSION}/jenkins.war", 200, b"jenkins war")
    feed = json.loads(update_center_document().split("\n")[1])
    for name, body in PLUGIN_BODIES.items():
        client.add(plugin_url(name, feed["plugins"][name]["version"]), 200, body)
    return client


@pytest.fixture
def fake_io() -> FakeIO:
    return FakeIO()


@pytest.fixture
def facts() -> Facts:
    return Facts(
        os="linux",
        platform="debian",
        platform_family="debian",
        platform_version="12",
        kernel_name="Linux",
        kernel_release="6.1.0-18-amd64",
        machine="x86_64",
        hostname="node1",
        fqdn="node1.example.com",
        init_system="systemd",
    )


@pytest.fixture
def update_center(http_client) -> UpdateCenter:
    center = UpdateCenter(http_client)
    center.load(update_center_document())
    return center


@pytest.fixture
def new_run(fake_io, http_client, update_center, facts) -> Callable[..., RunContext]:
    """
    Create runs that share the simulated system, so a second run sees what the first one changed
    """

    def create(**kwargs: object) -> RunContext:
        arguments = {"io": fake_io, "http_client": http_client, "update_center": update_center, "facts": facts}
        arguments.update(kwargs)
        return RunContext(**arguments)  # type: ignore[arg-type]

    return create


@pytest.fixture
def run_context(new_run) -> RunContext:
    return new_run()
