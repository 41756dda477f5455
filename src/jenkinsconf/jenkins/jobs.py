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

from jenkinsconf import const
from jenkinsconf.handler import HandlerContext, ResourceHandler, provider
from jenkinsconf.jenkins.fragments import TemplatedResource
from jenkinsconf.resources import Field, Resource, from_parent, lazy, resource, subresource
from jenkinsconf.std.files import Directory

LOGGER = logging.getLogger(__name__)


@subresource("job", parent_type="jenkins")
@resource("jenkins_job")
class Job(TemplatedResource):
    """
    A job of a Jenkins server, written to ``jobs/<job_name>/config.xml``. A changed job restarts the server.
    """

    fields = (
        Field("job_name", str, default=lazy(lambda r: r.name.split("::")[-1])),
        Field("jobs_path", str, default=from_parent("jobs_path"), required=True),
        Field("user", str, default=from_parent("user")),
        Field("group", str, default=from_parent("group")),
        Field("dir_permissions", str, default=from_parent("dir_permissions")),
    )
    # create is an alias of update
    allowed_actions = ("update", "create", "delete")
    default_action = "update"

    @property
    def job_dir(self) -> str:
        return os.path.join(self.jobs_path, self.job_name)

    @property
    def path(self) -> str:
        return os.path.join(self.job_dir, const.CONFIG_FILE)

    def after_created(self) -> None:
        if self.parent is not None:
            self.notifies("restart", self.parent)


@provider("jenkins_job", name=const.ProviderKind.generic)
class JobHandler(ResourceHandler):
    def job_directory(self, resource: Job, **attributes: object) -> Directory:
        return Directory(
            resource.job_dir, owner=resource.user, group=resource.group, mode=resource.dir_permissions, **attributes
        )

    def action_update(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Job)
        self.run_inline(
            ctx,
            [
                self.job_directory(resource),
                resource.file_resource(resource.path, owner=resource.user, group=resource.group, mode="600"),
            ],
        )

    def action_create(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        self.action_update(ctx, resource, current)

    def action_delete(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Job)
        self.run_inline(ctx, [self.job_directory(resource, action="delete", recursive=True)])
