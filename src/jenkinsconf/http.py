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
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Optional, Union

from tornado.httpclient import HTTPClient, HTTPClientError, HTTPRequest

LOGGER = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    code: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")


class HttpClient:
    """
    A blocking HTTP client. Every status code is returned as a response, only failures to reach the server raise.

    :param connect_timeout: Timeout for the initial connection in seconds
    :param request_timeout: Timeout for the entire request in seconds
    """

    def __init__(self, connect_timeout: float = 20, request_timeout: float = 120, validate_cert: bool = True) -> None:
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self.validate_cert = validate_cert

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
        """
        :raise ConnectionError: The server could not be reached
        """
        if method == "POST" and body is None:
            body = b""

        request = HTTPRequest(
            url=url,
            method=method,
            headers=dict(headers or {}),
            auth_username=username,
            auth_password=password if username is not None else None,
            body=body,
            follow_redirects=follow_redirects,
            connect_timeout=self.connect_timeout,
            request_timeout=self.request_timeout,
            validate_cert=self.validate_cert,
        )
        client = HTTPClient()
        try:
            response = client.fetch(request, raise_error=False)
        except HTTPClientError as e:
            raise ConnectionError(f"{method} {url} failed: {e}") from e
        except OSError as e:
            raise ConnectionError(f"{method} {url} failed: {e}") from e
        finally:
            client.close()

        if response.code == 599:
            # timeouts and connection failures
            raise ConnectionError(f"{method} {url} failed: {response.error}")
        LOGGER.debug("%s %s returned %d", method, url, response.code)
        return HttpResponse(response.code, response.body or b"", dict(response.headers.get_all()))
