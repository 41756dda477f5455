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

import json
import logging
import time
import urllib.parse
import xml.etree.ElementTree as ET
from collections.abc import Callable, Mapping
from typing import Optional

from jenkinsconf import const
from jenkinsconf.exceptions import ConvergeError, StateReadError
from jenkinsconf.http import HttpClient, HttpResponse

LOGGER = logging.getLogger(__name__)


def parse_jnlp_secret(document: str) -> Optional[str]:
    """
    Return the text of the first ``application-desc/argument`` element of a jnlp document that contains a secret
    """
    root = ET.fromstring(document)
    for element in root.iter("application-desc"):
        for argument in element.iter("argument"):
            if argument.text and const.JNLP_SECRET_REGEX.search(argument.text):
                return argument.text
    return None


class JenkinsAPI:
    """
    The part of the Jenkins remote API that is needed to register nodes and to know whether the server is up.

    :param url: The url of the Jenkins server
    :param username: The user to authenticate as, anonymous when not set
    :param password: The password or api token of the user
    :param http_client: The HTTP client to use
    """

    def __init__(
        self,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        http_client: Optional[HttpClient] = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._username = username
        self._password = password
        self._http_client = http_client or HttpClient()

    @property
    def url(self) -> str:
        return self._url

    def _fetch(self, path: str, **kwargs: object) -> HttpResponse:
        return self._http_client.fetch(
            self._url + path, username=self._username, password=self._password, **kwargs  # type: ignore[arg-type]
        )

    def get(self, path: str) -> HttpResponse:
        LOGGER.debug("[jenkins-api] Requesting '%s'", self._url + path)
        return self._fetch(path)

    def get_json(self, path: str) -> object:
        response = self.get(path)
        if response.code != 200:
            raise StateReadError(f"GET {self._url + path} returned HTTP {response.code}")
        return json.loads(response.text)

    def crumb(self) -> Optional[tuple[str, str]]:
        """
        Get a CSRF crumb

        :return: The name of the request field and the crumb, or None when the server does not issue crumbs
        """
        response = self.get(const.CRUMB_ISSUER_PATH)
        if response.code == 404:
            LOGGER.debug("[jenkins-api] Crumbs are not enabled on %s", self._url)
            return None
        if response.code != 200:
            raise ConvergeError(f"Failed to get a crumb from {self._url}: HTTP {response.code}")
        data = json.loads(response.text)
        return data["crumbRequestField"], data["crumb"]

    def post(self, path: str, params: Optional[Mapping[str, str]] = None) -> HttpResponse:
        """
        Post a form. The crumb is sent as a header. A redirect counts as success.

        :raise ConvergeError: The server did not accept the request
        """
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        crumb = self.crumb()
        if crumb is not None:
            headers[crumb[0]] = crumb[1]
        LOGGER.debug("[jenkins-api] Posting to '%s' with %s", self._url + path, sorted((params or {}).keys()))
        response = self._fetch(
            path,
            method="POST",
            body=urllib.parse.urlencode(params or {}),
            headers=headers,
            follow_redirects=False,
        )
        if response.code not in (200, 302):
            LOGGER.debug("[jenkins-api] Error %d: %s", response.code, response.body[:1000])
            raise ConvergeError(f"POST {self._url + path} returned HTTP {response.code}")
        return response

    def _computer_path(self, name: str) -> str:
        return "/computer/" + urllib.parse.quote(name, safe="")

    def node_exists(self, name: str) -> bool:
        response = self.get(self._computer_path(name))
        if response.code == 404:
            return False
        if response.code != 200:
            raise StateReadError(f"Failed to look up node {name} on {self._url}: HTTP {response.code}")
        return True

    def node_config(self, name: str) -> Optional[str]:
        """
        The config.xml of a node, None when the node does not exist
        """
        response = self.get(self._computer_path(name) + "/config.xml")
        if response.code == 404:
            return None
        if response.code != 200:
            raise StateReadError(f"Failed to read the config of node {name} on {self._url}: HTTP {response.code}")
        return response.text

    def create_node(self, name: str, node_data: Mapping[str, object]) -> None:
        self.post(
            "/computer/doCreateItem",
            {"name": name, "type": "hudson.slaves.DumbSlave$DescriptorImpl", "json": json.dumps(node_data)},
        )

    def update_node(self, name: str, node_data: Mapping[str, object]) -> None:
        self.post(self._computer_path(name) + "/configSubmit", {"json": json.dumps(node_data)})

    def jnlp_secret(self, name: str) -> str:
        """
        :raise StateReadError: The jnlp descriptor of the node has no secret
        """
        response = self.get(self._computer_path(name) + "/slave-agent.jnlp")
        if response.code != 200:
            raise StateReadError(f"Failed to get the jnlp descriptor of node {name}: HTTP {response.code}")
        try:
            secret = parse_jnlp_secret(response.text)
        except ET.ParseError as e:
            raise StateReadError(f"The jnlp descriptor of node {name} is not valid XML", cause=e)
        if secret is None:
            raise StateReadError(f"The jnlp descriptor of node {name} contains no secret")
        return secret

    def is_up(self) -> bool:
        try:
            response = self.get("/")
        except ConnectionError as e:
            LOGGER.debug("[jenkins-api] %s is not reachable: %s", self._url, e)
            return False
        return response.code in const.SERVER_UP_STATUS_CODES

    def wait_until_up(
        self,
        max_attempts: int = 0,
        interval: float = const.SERVER_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int:
        """
        Poll the server until it answers with one of the status codes of a server that is up.

        :param max_attempts: Give up after this many polls, 0 polls forever
        :param interval: Seconds between two polls
        :return: The number of polls
        :raise ConvergeError: The server did not come up in max_attempts polls
        """
        attempts = 0
        while True:
            attempts += 1
            if self.is_up():
                LOGGER.debug("[jenkins-api] %s is up after %d attempts", self._url, attempts)
                return attempts
            if max_attempts > 0 and attempts >= max_attempts:
                raise ConvergeError(f"Jenkins at {self._url} did not come up after {attempts} attempts")
            LOGGER.debug("[jenkins-api] Waiting for %s to come up", self._url)
            sleep(interval)
