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
import json
import logging
from typing import ClassVar, Optional

import pydantic
from packaging.version import InvalidVersion, Version
from pydantic import BaseModel, ConfigDict

from jenkinsconf import config
from jenkinsconf.exceptions import ResourceNotFoundError, StateReadError
from jenkinsconf.http import HttpClient

LOGGER = logging.getLogger(__name__)


class PluginDependency(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")

    name: str
    optional: bool = False
    version: Optional[str] = None


class PluginInfo(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")

    name: str
    version: str
    sha1: Optional[str] = None
    url: Optional[str] = None
    dependencies: list[PluginDependency] = []

    def required_dependencies(self) -> list[PluginDependency]:
        return [dep for dep in self.dependencies if not dep.optional]

    def sha1_hex(self) -> Optional[str]:
        """
        The update center publishes the sha1 of a plugin base64 encoded
        """
        if not self.sha1:
            return None
        return base64.b64decode(self.sha1).hex()


class CoreInfo(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")

    version: str
    sha1: Optional[str] = None
    url: Optional[str] = None


class UpdateCenterFeed(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")

    core: Optional[CoreInfo] = None
    plugins: dict[str, PluginInfo] = {}


def parse_feed(document: str) -> UpdateCenterFeed:
    """
    Parse an update center document. The first and the last line are the JSONP wrapper and are dropped.
    """
    lines = document.split("\n")
    body = "\n".join(lines[1:-1])
    return UpdateCenterFeed.model_validate(json.loads(body))


def is_newer(candidate: str, current: str) -> bool:
    """
    Compare two plugin versions, falling back to a string comparison for versions that do not follow PEP 440
    """
    try:
        return Version(candidate) > Version(current)
    except InvalidVersion:
        return candidate != current and candidate > current


class UpdateCenter:
    """
    A lazily populated cache of the update center feed. The feed is downloaded on first use and kept for the lifetime
    of this object, pass the same instance to share it between runs.

    :param http_client: The client used to download the feed
    :param url: The url of the feed, :data:`~jenkinsconf.config.server_update_url` when not set
    """

    def __init__(self, http_client: HttpClient, url: Optional[str] = None) -> None:
        self._http_client = http_client
        self._url = url
        self._feed: Optional[UpdateCenterFeed] = None

    @property
    def url(self) -> str:
        if self._url is None:
            self._url = config.server_update_url.get()
        return self._url

    def load(self, document: str) -> None:
        """
        Populate the cache with a document
        """
        self._feed = parse_feed(document)

    @property
    def feed(self) -> UpdateCenterFeed:
        if self._feed is None:
            LOGGER.info("Downloading the update center feed from %s", self.url)
            try:
                response = self._http_client.fetch(self.url)
            except ConnectionError as e:
                raise StateReadError(f"Failed to download the update center feed from {self.url}", cause=e)
            if response.code != 200:
                raise StateReadError(f"Failed to download the update center feed from {self.url}: HTTP {response.code}")
            try:
                self.load(response.text)
            except (ValueError, pydantic.ValidationError) as e:
                raise StateReadError(f"The update center feed at {self.url} is not valid", cause=e)
        return self._feed

    def core_version(self) -> str:
        if self.feed.core is None:
            raise ResourceNotFoundError(f"The update center feed at {self.url} has no core version")
        return self.feed.core.version

    def plugin(self, name: str) -> PluginInfo:
        """
        :raise ResourceNotFoundError: The plugin is not in the feed
        """
        if name not in self.feed.plugins:
            raise ResourceNotFoundError(f"Plugin {name} is not available in the update center")
        return self.feed.plugins[name]

    def latest_version(self, name: str) -> str:
        return self.plugin(name).version
