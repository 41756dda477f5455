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
import urllib.parse

import pytest

from jenkinsconf.api import JenkinsAPI, parse_jnlp_secret
from jenkinsconf.exceptions import ConvergeError, StateReadError

from conftest import JENKINS_URL, JNLP, SECRET, FakeHttpClient


@pytest.fixture
def api(http_client) -> JenkinsAPI:
    return JenkinsAPI(JENKINS_URL + "/", username="admin", password="secret", http_client=http_client)


def test_url_is_normalized(api):
    assert api.url == JENKINS_URL


def test_post_without_crumb(api, http_client: FakeHttpClient):
    http_client.add(JENKINS_URL + "/computer/doCreateItem", 302, method="POST")

    api.create_node("node1", {"name": "node1"})

    request = http_client.requests[-1]
    assert request.method == "POST"
    assert request.username == "admin"
    assert "Jenkins-Crumb" not in request.headers
    form = urllib.parse.parse_qs(request.body)
    assert form["name"] == ["node1"]
    assert form["type"] == ["hudson.slaves.DumbSlave$DescriptorImpl"]
    assert json.loads(form["json"][0]) == {"name": "node1"}


def test_post_sends_crumb_header(api, http_client: FakeHttpClient):
    http_client.add(
        JENKINS_URL + "/crumbIssuer/api/json", 200, json.dumps({"crumbRequestField": "Jenkins-Crumb", "crumb": "abc"})
    )
    http_client.add(JENKINS_URL + "/computer/node1/configSubmit", 200, method="POST")

    api.update_node("node1", {"name": "node1"})

    assert api.crumb() == ("Jenkins-Crumb", "abc")
    post = [r for r in http_client.requests if r.method == "POST"][0]
    assert post.headers["Jenkins-Crumb"] == "abc"


def test_post_failure(api, http_client: FakeHttpClient):
    http_client.add(JENKINS_URL + "/computer/doCreateItem", 500, "boom", method="POST")

    with pytest.raises(ConvergeError) as e:
        api.create_node("node1", {})
    assert "returned HTTP 500" in str(e.value)


def test_crumb_error(api, http_client: FakeHttpClient):
    http_client.add(JENKINS_URL + "/crumbIssuer/api/json", 500)

    with pytest.raises(ConvergeError):
        api.crumb()


def test_node_lookup(api, http_client: FakeHttpClient):
    http_client.add(JENKINS_URL + "/computer/node1", 200)
    http_client.add(JENKINS_URL + "/computer/node1/config.xml", 200, "<slave/>")
    http_client.add(JENKINS_URL + "/computer/broken", 500)

    assert api.node_exists("node1")
    assert not api.node_exists("node2")
    assert api.node_config("node1") == "<slave/>"
    assert api.node_config("node2") is None
    with pytest.raises(StateReadError):
        api.node_exists("broken")


def test_node_names_are_quoted(api, http_client: FakeHttpClient):
    assert not api.node_exists("build node")
    assert http_client.requests[-1].url == JENKINS_URL + "/computer/build%20node"


def test_jnlp_secret(api, http_client: FakeHttpClient):
    assert parse_jnlp_secret(JNLP) == SECRET
    assert parse_jnlp_secret("<jnlp><application-desc><argument>-headless</argument></application-desc></jnlp>") is None

    http_client.add(JENKINS_URL + "/computer/node1/slave-agent.jnlp", 200, JNLP)
    http_client.add(JENKINS_URL + "/computer/node2/slave-agent.jnlp", 200, "<jnlp/>")
    http_client.add(JENKINS_URL + "/computer/node3/slave-agent.jnlp", 200, "not xml <")

    assert api.jnlp_secret("node1") == SECRET
    with pytest.raises(StateReadError, match="contains no secret"):
        api.jnlp_secret("node2")
    with pytest.raises(StateReadError, match="not valid XML"):
        api.jnlp_secret("node3")
    with pytest.raises(StateReadError, match="HTTP 404"):
        api.jnlp_secret("node4")


@pytest.mark.parametrize("code, up", [(200, True), (401, True), (403, True), (503, False), (404, False)])
def test_is_up(code, up):
    client = FakeHttpClient()
    client.add(JENKINS_URL + "/", code)

    assert JenkinsAPI(JENKINS_URL, http_client=client).is_up() is up


def test_wait_until_up():
    client = FakeHttpClient()
    client.add_error(JENKINS_URL + "/", ConnectionError("connection refused"))
    client.add(JENKINS_URL + "/", 503)
    client.add(JENKINS_URL + "/", 403)
    sleeps = []

    attempts = JenkinsAPI(JENKINS_URL, http_client=client).wait_until_up(interval=5, sleep=sleeps.append)

    assert attempts == 3
    assert sleeps == [5, 5]


def test_wait_until_up_gives_up():
    client = FakeHttpClient()
    client.add(JENKINS_URL + "/", 503)
    sleeps = []

    with pytest.raises(ConvergeError) as e:
        JenkinsAPI(JENKINS_URL, http_client=client).wait_until_up(max_attempts=4, sleep=sleeps.append)

    assert "did not come up after 4 attempts" in str(e.value)
    assert len(sleeps) == 3
    assert client.requested(JENKINS_URL + "/") == 4
