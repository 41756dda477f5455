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

import traceback
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from jenkinsconf.resources import Id


class JenkinsConfException(Exception):
    """
    Base class for all errors raised while declaring or converging resources.

    :param msg: The error message
    :param resource_id: The identity of the resource the error originates from, if any
    :param cause: The underlying exception, if any
    """

    def __init__(self, msg: str, resource_id: Optional["Id"] = None, cause: Optional[BaseException] = None) -> None:
        Exception.__init__(self, msg)
        self.msg = msg
        self.resource_id = resource_id
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> Optional[BaseException]:
        return self.__cause__

    def get_message(self) -> str:
        return self.msg

    def format(self) -> str:
        """Make a string representation of this particular exception"""
        if self.resource_id is not None:
            return "%s: %s" % (self.resource_id, self.get_message())
        return self.get_message()

    def format_trace(self, indent: str = "  ") -> str:
        """Make a representation of this exception and its cause"""
        out = self.format()
        if self.__cause__ is not None:
            out += "\ncaused by:\n"
            for line in traceback.format_exception_only(self.__cause__.__class__, self.__cause__):
                out += indent + line
        return out

    def __str__(self) -> str:
        return self.format()


class DeclarationError(JenkinsConfException):
    """Raised while resources are declared, before any provider runs"""


class DuplicateResourceError(DeclarationError):
    pass


class MissingRequiredAttributeError(DeclarationError):
    pass


class ConflictingAttributesError(DeclarationError):
    pass


class InvalidAttributeError(DeclarationError):
    """An attribute value does not match the declared kind or choices"""


class FrozenAttributeError(DeclarationError):
    """An attribute was assigned after its value had been used to resolve a default"""


class UnknownSubResourceError(DeclarationError):
    pass


class UnknownActionError(DeclarationError):
    pass


class ResourceNotFoundError(JenkinsConfException):
    pass


class StateReadError(JenkinsConfException):
    """Probing the current state of a resource failed"""


class ConvergeError(JenkinsConfException):
    """Mutating the system towards the desired state failed"""


class ValidationError(JenkinsConfException):
    pass


class InvalidAggregateError(ValidationError):
    """The aggregated configuration is not well-formed, nothing was written"""


class ResourceReferenceError(JenkinsConfException):
    """A notification refers to a resource that was never declared"""


class IntegrityError(JenkinsConfException):
    """A downloaded artifact does not match its expected checksum"""
