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

from jenkinsconf import config, const
from jenkinsconf.exceptions import DeclarationError
from jenkinsconf.handler import HandlerContext, ResourceHandler, provider
from jenkinsconf.jenkins.fragments import TemplatedResource
from jenkinsconf.resources import Field, Resource, from_config, from_parent, lazy, resource, subresource
from jenkinsconf.std.execute import Execute
from jenkinsconf.std.packages import Package
from jenkinsconf.std.services import Service

LOGGER = logging.getLogger(__name__)


@subresource("proxy", parent_type="jenkins")
@resource("jenkins_proxy")
class Proxy(TemplatedResource):
    """
    A reverse proxy in front of a Jenkins server. The proxy implementation is the provider of the resource, taken from
    the ``proxy.provider`` option when it is not set.
    """

    fields = (
        Field("listen_ports", list, default=lazy(lambda r: list(config.proxy_listen_ports.get()))),
        Field("hostname", str, default=from_config(config.proxy_hostname)),
        Field("ssl_enabled", bool, default=from_config(config.proxy_ssl_enabled)),
        Field("ssl_redirect_http", bool, default=from_config(config.proxy_ssl_redirect_http)),
        Field("ssl_listen_ports", list, default=lazy(lambda r: list(config.proxy_ssl_listen_ports.get()))),
        Field("ssl_path", str, default=lazy(lambda r: os.path.join(r.parent.path, "ssl") if r.parent else None)),
        Field("cert_path", str, default=lazy(lambda r: os.path.join(r.ssl_path, "jenkins.pem") if r.ssl_path else None)),
        Field("key_path", str, default=lazy(lambda r: os.path.join(r.ssl_path, "jenkins.key") if r.ssl_path else None)),
        Field("port", int, default=from_parent("port", fallback=config.server_port.get)),
    )
    allowed_actions = ("install",)
    default_action = "install"
    # the provider supplies the template when neither source nor content is set
    content_required = False

    def validate(self) -> None:
        super().validate()
        if self.provider is None:
            configured = config.proxy_provider.get()
            if configured is None:
                raise DeclarationError(f"{self.id}: Unable to autodetect the proxy provider, please specify one", self.id)
            try:
                self.provider = const.ProviderKind(configured)
            except ValueError:
                raise DeclarationError(f"{self.id}: Unknown proxy provider {configured}", self.id) from None
        if self.provider not in (const.ProviderKind.nginx, const.ProviderKind.apache):
            raise DeclarationError(f"{self.id}: {self.provider.value} is not a proxy provider", self.id)

    def template_variables(self) -> dict[str, object]:
        return {
            "listen_ports": self.listen_ports,
            "hostname": self.hostname,
            "ssl_enabled": self.ssl_enabled,
            "ssl_redirect_http": self.ssl_redirect_http,
            "ssl_listen_ports": self.ssl_listen_ports,
            "cert_path": self.cert_path,
            "key_path": self.key_path,
            "port": self.port,
            **self.variables,
        }


class ProxyHandler(ResourceHandler):
    """
    Installs the proxy server, writes the virtual host of Jenkins and enables it. A variant implements the steps.
    """

    service_name: str
    default_source: str

    def config_dir(self) -> str:
        raise NotImplementedError()

    def install_steps(self, resource: Proxy) -> list[Resource]:
        raise NotImplementedError()

    def enable_steps(self, resource: Proxy) -> list[Resource]:
        raise NotImplementedError()

    def config_path(self) -> str:
        return os.path.join(self.config_dir(), "sites-available", "jenkins.conf")

    def action_install(self, ctx: HandlerContext, resource: Resource, current: object) -> None:
        assert isinstance(resource, Proxy)
        service = Service(self.service_name, action=["enable", "start"])
        vhost = resource.file_resource(
            self.config_path(), default_source=self.default_source, owner="root", group="root", mode="600"
        )
        vhost.notifies("reload", service)

        changed = self.run_inline(ctx, self.install_steps(resource) + [vhost] + self.enable_steps(resource) + [service])
        if changed:
            ctx.info(
                "installed a proxy server named %(hostname)s for the Jenkins server at port %(port)s",
                hostname=resource.hostname,
                port=resource.port,
            )


@provider("jenkins_proxy", name=const.ProviderKind.nginx)
class NginxProxyHandler(ProxyHandler):
    service_name = "nginx"
    default_source = "proxy_nginx.conf.j2"

    def config_dir(self) -> str:
        return config.proxy_nginx_dir.get()

    def install_steps(self, resource: Proxy) -> list[Resource]:
        return [Package("nginx")]

    def enable_steps(self, resource: Proxy) -> list[Resource]:
        enabled = os.path.join(self.config_dir(), "sites-enabled", "jenkins.conf")
        return [Execute(f"ln -s {self.config_path()} {enabled}", creates=enabled)]


@provider("jenkins_proxy", name=const.ProviderKind.apache)
class ApacheProxyHandler(ProxyHandler):
    service_name = "apache2"
    default_source = "proxy_apache.conf.j2"

    def config_dir(self) -> str:
        return config.proxy_apache_dir.get()

    def modules(self, resource: Proxy) -> list[str]:
        modules = ["proxy", "proxy_http", "headers"]
        if resource.ssl_enabled:
            modules.append("ssl")
        return modules

    def install_steps(self, resource: Proxy) -> list[Resource]:
        steps: list[Resource] = [Package("apache2")]
        for module in self.modules(resource):
            enabled = os.path.join(self.config_dir(), "mods-enabled", f"{module}.load")
            steps.append(Execute(f"a2enmod {module}", creates=enabled))
        return steps

    def enable_steps(self, resource: Proxy) -> list[Resource]:
        enabled = os.path.join(self.config_dir(), "sites-enabled", "jenkins.conf")
        return [Execute("a2ensite jenkins", creates=enabled)]
