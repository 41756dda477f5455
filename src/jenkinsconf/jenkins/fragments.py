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

import hashlib
import logging
import os
from typing import Optional

from jenkinsconf import const
from jenkinsconf.exceptions import MissingRequiredAttributeError
from jenkinsconf.handler import HandlerContext, ResourceHandler, provider
from jenkinsconf.resources import Field, Resource, from_parent, lazy, resource, subresource
from jenkinsconf.std.files import File, Template

LOGGER = logging.getLogger(__name__)


class TemplatedResource(Resource):
    """
    A resource that writes a file from either a template or literal content
    """

    fields = (
        Field("source", str),
        Field("content", str),
        Field("variables", dict, default={}),
    )
    exclusive = (("source", "content"),)
    # The template that is used when neither source nor content is set, if any
    default_source: str = ""
    content_required = True

    def validate(self) -> None:
        super().validate()
        if all(action in ("delete", "disable") for action in self.action):
            return
        if self.content_required and self.source is None and self.content is None and not self.default_source:
            raise MissingRequiredAttributeError(f"{self.id}: One of source or content is required", self.id)

    def template_variables(self) -> dict[str, object]:
        return dict(self.variables)

    def file_resource(self, path: str, default_source: Optional[str] = None, **attributes: object) -> Resource:
        """
        The std resource that writes the file of this resource to path

        :param default_source: The template to use when neither source nor content is set
        """
        if self.content is not None:
            return File(path, content=self.content, **attributes)
        source = self.source or default_source or self.default_source
        return Template(path, source=source, variables=self.template_variables(), **attributes)


@subresource("config", parent_type="jenkins")
@resource("jenkins_config")
class ConfigFragment(TemplatedResource):
    """
    A fragment of the config.xml of a Jenkins server. Enabling or disabling a fragment rebuilds the config.xml
    immediately, before the delayed restart of the server.
    """

    fields = (
        Field(
            "path",
            str,
            default=lazy(lambda r: os.path.join(r.parent.config_path, f"{r.name}.xml") if r.parent else None),
            required=True,
        ),
        Field("user", str, default=from_parent("user")),
        Field("group", str, default=from_parent("group")),
    )
    allowed_actions = ("enable", "disable")
    default_action = "enable"

    def after_created(self) -> None:
        if self.parent is not None:
            self.notifies("rebuild_config", self.parent, const.Timing.immediate)


def credential_uuid(name: str) -> str:
    """
    Derive something that looks like a uuid from the name: the first 32 hex digits of the sha1 of the name
    """
    value = hashlib.sha1(name.encode("utf-8")).hexdigest()[:32]
    for position in (20, 12, 16, 8):
        value = value[:position] + "-" + value[position:]
    return value


@subresource("credential", parent_type="jenkins")
@resource("jenkins_credential")
class Credential(TemplatedResource):
    """
    An ssh private key credential, written as a fragment of credentials.xml
    """

    fields = (
        Field("uuid", str, default=lazy(lambda r: credential_uuid(r.name))),
        Field("username", str, default=lazy(lambda r: r.name.split("::")[-1])),
        Field("key", str, required=True),
        Field("passphrase", str),
        Field("description", str),
        Field(
            "path",
            str,
            default=lazy(lambda r: os.path.join(r.parent.credentials_path, f"{r.uuid}.xml") if r.parent else None),
            required=True,
        ),
        Field("user", str, default=from_parent("user")),
        Field("group", str, default=from_parent("group")),
    )
    allowed_actions = ("enable", "disable")
    default_action = "enable"
    default_source = "credential.xml.j2"

    def template_variables(self) -> dict[str, object]:
        return {
            "uuid": self.uuid,
            "username": self.username,
            "key": self.key,
            "passphrase": self.passphrase,
            "description": self.description,
            **self.variables,
        }

    def after_created(self) -> None:
        if self.parent is not None:
            self.notifies("rebuild_credentials", self.parent, const.Timing.immediate)


@subresource("view", parent_type="jenkins")
@resource("jenkins_view")
class View(TemplatedResource):
    """
    A list view, written as a fragment of config.xml
    """

    fields = (
        Field("view_name", str, default=lazy(lambda r: r.name.split("::")[-1])),
        Field("jobs", list, default=[]),
        Field(
            "path",
            str,
            default=lazy(lambda r: os.path.join(r.parent.config_path, f"view-{r.view_name}.xml") if r.parent else None),
            required=True,
        ),
        Field("user", str, default=from_parent("user")),
        Field("group", str, default=from_parent("group")),
    )
    allowed_actions = ("enable", "disable")
    default_action = "enable"
    default_source = "view.xml.j2"

    def template_variables(self) -> dict[str, object]:
        return {"view_name": self.view_name, "jobs": self.jobs, **self.variables}

    def after_created(self) -> None:
        if self.parent is not None:
            self.notifies("rebuild_config", self.parent, const.Timing.immediate)


@provider("jenkins_view", name=const.ProviderKind.generic)
@provider("jenkins_credential", name=const.ProviderKind.generic)
@provider("jenkins_config", name=const.ProviderKind.generic)
class FragmentHandler(ResourceHandler):
    """
    Writes or removes the fragment file of a config fragment, credential or view
    """

    def action_enable(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, TemplatedResource)
        self.run_inline(
            ctx, [resource.file_resource(resource.path, owner=resource.user, group=resource.group, mode="600")]
        )

    def action_disable(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        self.run_inline(ctx, [File(resource.path, action="delete")])
