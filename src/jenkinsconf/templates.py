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
from collections.abc import Mapping, Sequence
from typing import Optional

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, PackageLoader, StrictUndefined, TemplateError

from jenkinsconf.exceptions import ConvergeError

LOGGER = logging.getLogger(__name__)


class TemplateRenderer:
    """
    Render jinja2 templates. Templates are looked up in the given search path first and in the templates shipped with
    this package after that.

    :param search_path: Extra directories to look up templates in
    """

    def __init__(self, search_path: Optional[Sequence[str]] = None) -> None:
        loaders = []
        if search_path:
            loaders.append(FileSystemLoader([os.path.abspath(p) for p in search_path]))
        loaders.append(PackageLoader("jenkinsconf"))
        self._env = Environment(
            loader=ChoiceLoader(loaders),
            keep_trailing_newline=True,
            undefined=StrictUndefined,
            autoescape=False,
        )
        self._env.filters["xml_escape"] = xml_escape

    def render(self, template: str, variables: Mapping[str, object]) -> str:
        """
        Render a template by name, for example ``view.xml.j2``
        """
        try:
            return self._env.get_template(template).render(**variables)
        except TemplateError as e:
            raise ConvergeError(f"Failed to render template {template}: {e}", cause=e)

    def render_string(self, source: str, variables: Mapping[str, object]) -> str:
        """
        Render the given template source
        """
        try:
            return self._env.from_string(source).render(**variables)
        except TemplateError as e:
            raise ConvergeError(f"Failed to render template: {e}", cause=e)


def xml_escape(value: object) -> str:
    return (
        str(value)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )
