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
import xml.etree.ElementTree as ET
from typing import Optional

from jenkinsconf.exceptions import InvalidAggregateError
from jenkinsconf.io.local import LocalIO

LOGGER = logging.getLogger(__name__)


def normalize_fragment(content: str) -> str:
    """
    Make a fragment end in exactly one newline
    """
    return content.rstrip("\n") + "\n"


def list_fragments(fragment_dir: str, io: Optional[LocalIO] = None) -> list[str]:
    """
    The fragment files in a directory, sorted byte-wise by filename. Hidden files and directories are skipped.
    """
    io = io or LocalIO()
    if not io.is_dir(fragment_dir):
        return []
    names = [
        name
        for name in io.list_dir(fragment_dir)
        if not name.startswith(".") and not io.is_dir(os.path.join(fragment_dir, name))
    ]
    return sorted(names, key=lambda name: name.encode("utf-8"))


def aggregate(fragment_dir: str, header: str, footer: str, io: Optional[LocalIO] = None) -> str:
    """
    Concatenate the fragments in fragment_dir between header and footer.

    Each fragment is normalized to end in one newline and fragments are separated by a newline:
    ``header + "\\n" + "\\n".join(fragments) + footer + "\\n"``
    """
    io = io or LocalIO()
    fragments = [normalize_fragment(io.read(os.path.join(fragment_dir, name))) for name in list_fragments(fragment_dir, io)]
    return header + "\n" + "\n".join(fragments) + footer + "\n"


def validate(content: str, source: str = "aggregate") -> None:
    """
    Check that content is well-formed XML.

    :raise InvalidAggregateError: The content can not be parsed, the parse error is the cause
    """
    try:
        ET.fromstring(content.encode("utf-8"))
    except ET.ParseError as e:
        raise InvalidAggregateError(f"The {source} is not well-formed XML: {e}", cause=e)
