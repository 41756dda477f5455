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
import re
import socket
from collections import abc, defaultdict
from configparser import ConfigParser, Interpolation
from typing import Callable, Generic, Optional, TypeVar, Union, overload

from jenkinsconf import const

LOGGER = logging.getLogger(__name__)


def _normalize_name(name: str) -> str:
    return name.replace("_", "-")


def _get_from_env(section: str, name: str) -> Optional[str]:
    return os.environ.get(f"{const.ENV_PREFIX}_{section}_{name}".replace("-", "_").upper(), default=None)


class LenientConfigParser(ConfigParser):
    def optionxform(self, name: str) -> str:
        name = _normalize_name(name)
        return super(LenientConfigParser, self).optionxform(name)


class Config(object):
    __instance: Optional[ConfigParser] = None
    _config_dir: Optional[str] = None  # The directory this config was loaded from
    __config_definition: dict[str, dict[str, "Option"]] = defaultdict(lambda: {})

    @classmethod
    def get_config_options(cls) -> dict[str, dict[str, "Option"]]:
        return cls.__config_definition

    @classmethod
    def load_config(
        cls,
        config_file: Optional[str] = None,
        config_dir: Optional[str] = None,
        main_cfg_file: str = "/etc/jenkinsconf/jenkinsconf.cfg",
    ) -> None:
        """
        Load the configuration file
        """
        cfg_files_in_config_dir: list[str]
        if config_dir and os.path.isdir(config_dir):
            cfg_files_in_config_dir = sorted(
                [os.path.join(config_dir, f) for f in os.listdir(config_dir) if f.endswith(".cfg")]
            )
        else:
            cfg_files_in_config_dir = []

        local_cfg_files: list[str] = [os.path.expanduser("~/.jenkinsconf.cfg"), ".jenkinsconf.cfg"]

        # Files with a higher index in the list, override config options defined by files with a lower index
        files: list[str] = [main_cfg_file] + cfg_files_in_config_dir + local_cfg_files
        if config_file is not None:
            files.append(config_file)

        config = LenientConfigParser(interpolation=Interpolation())
        config.read(files)
        cls.__instance = config
        cls._config_dir = config_dir

    @classmethod
    def _get_instance(cls) -> ConfigParser:
        if cls.__instance is None:
            cls.load_config()

        return cls.__instance

    @classmethod
    def _reset(cls) -> None:
        cls.__instance = None
        cls._config_dir = None

    @overload
    @classmethod
    def get(cls) -> ConfigParser: ...

    @overload
    @classmethod
    def get(cls, section: str, name: str, default_value: Optional[str] = None) -> Optional[str]: ...

    @classmethod
    def get(
        cls, section: Optional[str] = None, name: Optional[str] = None, default_value: Optional[str] = None
    ) -> Union[str, ConfigParser, None]:
        """
        Get the entire config or get a value directly
        """
        cfg = cls._get_instance()
        if section is None:
            return cfg

        assert name is not None
        name = _normalize_name(name)

        opt = cls.validate_option_request(section, name, default_value)

        val = _get_from_env(section, name)
        if val is not None:
            LOGGER.debug("Setting %s:%s was set using an environment variable", section, name)
        else:
            val = cfg.get(section, name, fallback=default_value)

        if not opt:
            return val
        return opt.validate(val)

    @classmethod
    def is_set(cls, section: str, name: str) -> bool:
        """Check if a certain config option was specified in the config file."""
        return section in cls._get_instance() and _normalize_name(name) in cls._get_instance()[section]

    @classmethod
    def set(cls, section: str, name: str, value: str) -> None:
        """
        Override a value
        """
        name = _normalize_name(name)

        if section not in cls._get_instance():
            cls._get_instance().add_section(section)
        cls._get_instance().set(section, name, value)

    @classmethod
    def register_option(cls, option: "Option") -> None:
        cls.__config_definition[option.section][option.name] = option

    @classmethod
    def validate_option_request(cls, section: str, name: str, default_value: Optional[str]) -> Optional["Option"]:
        if section not in cls.__config_definition:
            LOGGER.warning("Config section %s not defined", section)
            return None
        if name not in cls.__config_definition[section]:
            LOGGER.warning("Config name %s not defined in section %s", name, section)
            return None
        opt = cls.__config_definition[section][name]
        if default_value is not None and opt.get_default_value() != default_value:
            LOGGER.warning(
                "Inconsistent default value for option %s.%s: defined as %s, got %s", section, name, opt.default, default_value
            )

        return opt


def is_int(value: str) -> int:
    """int"""
    return int(value)


def is_bool(value: Union[bool, str]) -> bool:
    """Boolean value, represented as any of true, false, on, off, yes, no, 1, 0. (Case-insensitive)"""
    if isinstance(value, bool):
        return value
    boolean_states: abc.Mapping[str, bool] = Config._get_instance().BOOLEAN_STATES
    if value.lower() not in boolean_states:
        raise ValueError("Not a boolean: %s" % value)
    return boolean_states[value.lower()]


def is_list(value: Union[str, list[str]]) -> list[str]:
    """List of comma-separated values"""
    if isinstance(value, list):
        return value
    return [] if value == "" else [x.strip() for x in value.split(",")]


def is_int_list(value: Union[str, list[int]]) -> list[int]:
    """List of comma-separated integers"""
    if isinstance(value, list):
        return value
    return [int(x) for x in is_list(value)]


def is_map(map_in: Union[str, dict[str, str]]) -> dict[str, str]:
    """List of comma-separated key=value pairs"""
    if isinstance(map_in, dict):
        return map_in
    map_out = {}
    if map_in is not None:
        mappings = map_in.split(",")

        for mapping in mappings:
            parts = re.split("=", mapping.strip(), maxsplit=1)
            if len(parts) == 2:
                key = parts[0].strip()
                value = parts[1].strip()
                if key != "" and value != "":
                    map_out[key] = value

    return map_out


def is_str(value: str) -> str:
    """str"""
    return str(value)


def is_str_opt(value: Optional[str]) -> Optional[str]:
    """optional str"""
    if value is None or value == "":
        return None
    return str(value)


def is_int_opt(value: Optional[str]) -> Optional[int]:
    """optional int"""
    if value is None or value == "":
        return None
    return int(value)


T = TypeVar("T")


class Option(Generic[T]):
    """
    Defines an option and exposes it for use

    All config option should be define prior to use
    For the document generator to work properly, they should be defined at the module level.

    :param section: section in the config file
    :param name: name of the option
    :param default: default value for this option
        the default value is either a value or a function.
        If it is a value, `str(default)` will be used a default value.
        If it is a function, its doc string will be used to represent the value in documentation.
        and its return value as the actual default value
    :param documentation: the documentation for this option
    :param validator: a function responsible for turning the string representation of the option into the correct type.
        Its docstring is used as representation for the type of the option.
    """

    def __init__(
        self,
        section: str,
        name: str,
        default: Union[T, None, Callable[[], T]],
        documentation: str,
        validator: Callable[[str], T] = is_str,
    ) -> None:
        self.section = section
        self.name = _normalize_name(name)
        self.validator = validator
        self.documentation = documentation
        self.default = default
        Config.register_option(self)

    def get(self) -> T:
        val = _get_from_env(self.section, self.name)
        if val is None:
            cfg = Config._get_instance()
            val = cfg.get(self.section, self.name, fallback=self.get_default_value())
        return self.validate(val)

    def get_type(self) -> Optional[str]:
        if callable(self.validator):
            return self.validator.__doc__
        return None

    def get_default_desc(self) -> str:
        defa = self.default
        if callable(defa):
            return "%s" % defa.__doc__
        else:
            return f"``{defa}``"

    def validate(self, value: str) -> T:
        return self.validator(value)

    def get_default_value(self) -> Optional[T]:
        defa = self.default
        if callable(defa):
            return defa()
        else:
            return defa

    def set(self, value: str) -> None:
        """Only for tests"""
        Config.set(self.section, self.name, value)


def option_as_default(opt: Option[T]) -> Callable[[], T]:
    """
    Wrap an option to be used as default value
    """

    def default_func() -> T:
        return opt.get()

    default_func.__doc__ = f""":jenkinsconf.config:option:`{opt.section}.{opt.name}`"""
    return default_func


def get_default_fqdn() -> str:
    """``socket.getfqdn()``"""
    return socket.getfqdn()


#############################
# Jenkins server
#############################
# flake8: noqa: H904
server_user = Option("server", "user", "jenkins", "The user the Jenkins server runs as", is_str)
server_group = Option("server", "group", option_as_default(server_user), "The group of the Jenkins server", is_str)
server_home_dir_group = Option(
    "server", "home_dir_group", option_as_default(server_user), "The group owning the home directory", is_str
)
server_plugins_dir_group = Option(
    "server", "plugins_dir_group", option_as_default(server_user), "The group owning the plugins directory", is_str
)
server_ssh_dir_group = Option(
    "server", "ssh_dir_group", option_as_default(server_user), "The group owning the .ssh directory", is_str
)
server_log_dir_group = Option(
    "server", "log_dir_group", option_as_default(server_user), "The group owning the log directory", is_str
)
server_dir_permissions = Option("server", "dir_permissions", "755", "Mode of the Jenkins directories", is_str)
server_ssh_dir_permissions = Option("server", "ssh_dir_permissions", "700", "Mode of the .ssh directory", is_str)
server_log_dir_permissions = Option("server", "log_dir_permissions", "755", "Mode of the log directory", is_str)
server_log_dir = Option("server", "log_dir", "/var/log/jenkins", "The log directory of the Jenkins server", is_str)
server_port = Option("server", "port", 8080, "The port the Jenkins server listens on", is_int)
server_host = Option("server", "host", get_default_fqdn, "The hostname of the Jenkins server", is_str)
server_url = Option(
    "server", "url", None, "The url of the Jenkins server, derived from host and port when not set", is_str_opt
)
server_slave_agent_port = Option(
    "server", "slave_agent_port", None, "Fixed TCP port for JNLP agents, a random port is used when not set", is_int_opt
)
server_executors = Option("server", "executors", 2, "Number of executors on the master", is_int)
server_service_name = Option("server", "service_name", "jenkins", "The name of the Jenkins service", is_str)
server_install_method = Option(
    "server", "install_method", "war", "How Jenkins is installed: war (generic) or package", is_str
)
server_mirror = Option("server", "mirror", "https://updates.jenkins.io/download", "The Jenkins download mirror", is_str)
server_update_url = Option(
    "server", "update_url", "https://updates.jenkins.io/update-center.json", "The url of the update center feed", is_str
)
server_war_url = Option(
    "server",
    "war_url",
    "%(mirror)s/war/%(version)s/jenkins.war",
    "Template of the url to download the Jenkins war from, with the mirror and version as keys",
    is_str,
)
server_plugin_url = Option(
    "server",
    "plugin_url",
    "%(mirror)s/plugins/%(name)s/%(version)s/%(name)s.hpi",
    "Template of the url to download plugins from, with the mirror, name and version as keys",
    is_str,
)
server_java_home = Option("server", "java_home", None, "The JAVA_HOME to run Jenkins with", is_str_opt)
server_jvm_options = Option("server", "jvm_options", None, "Extra options for the Jenkins JVM", is_str_opt)
server_wait_max_attempts = Option(
    "server",
    "wait_max_attempts",
    0,
    "Maximum number of polls while waiting for the server to come up, 0 waits forever",
    is_int,
)

#############################
# Jenkins node
#############################
node_home = Option("node", "home", "/home/jenkins", "The home directory of a Jenkins node", is_str)
node_log_dir = Option("node", "log_dir", "/var/log/jenkins", "The log directory of a Jenkins node", is_str)
node_user = Option("node", "user", "jenkins-node", "The user a Jenkins node runs as", is_str)
node_group = Option("node", "group", "jenkins-node", "The group of a Jenkins node", is_str)
node_shell = Option("node", "shell", "/bin/sh", "The login shell of the node user", is_str)
node_description = Option("node", "description", None, "Description of the node, derived from facts when not set", is_str_opt)
node_server_url = Option("node", "server_url", None, "The url of the Jenkins server the node connects to", is_str_opt)
node_server_username = Option("node", "server_username", None, "Username to authenticate against the server", is_str_opt)
node_server_password = Option("node", "server_password", None, "Password to authenticate against the server", is_str_opt)
node_executors = Option("node", "executors", 1, "Number of executors on a node", is_int)
node_mode = Option("node", "mode", "normal", "Usage mode of the node: normal or exclusive", is_str)
node_availability = Option("node", "availability", "always", "When the node is online: always or demand", is_str)
node_in_demand_delay = Option("node", "in_demand_delay", 0, "Minutes to wait before bringing a demand node online", is_int)
node_idle_delay = Option("node", "idle_delay", 1, "Minutes a demand node stays idle before going offline", is_int)
node_jvm_options = Option("node", "jvm_options", None, "Extra options for the node JVM", is_str_opt)
node_env = Option("node", "env", {}, "Environment variables of the node as key=value pairs", is_map)
node_labels = Option("node", "labels", [], "Labels of the node", is_list)
node_ssh_host = Option("node", "ssh_host", get_default_fqdn, "The host the server connects to over ssh", is_str)
node_ssh_port = Option("node", "ssh_port", 22, "The ssh port of the node", is_int)
node_ssh_user = Option("node", "ssh_user", None, "The ssh user, the node user when not set", is_str_opt)
node_ssh_password = Option("node", "ssh_password", None, "The ssh password", is_str_opt)
node_ssh_private_key = Option("node", "ssh_private_key", None, "The ssh private key", is_str_opt)
node_winsw_url = Option(
    "node",
    "winsw_url",
    "https://repo.jenkins-ci.org/releases/com/sun/winsw/winsw/1.13/winsw-1.13-bin.exe",
    "Where to download the windows service wrapper",
    is_str,
)

#############################
# Jenkins cli
#############################
cli_jvm_options = Option("cli", "jvm_options", None, "Extra options for the cli JVM", is_str_opt)
cli_key_file = Option("cli", "key_file", None, "The private key used to authenticate the cli", is_str_opt)

#############################
# Reverse proxy
#############################
proxy_listen_ports = Option("proxy", "listen_ports", [80], "The ports the proxy listens on", is_int_list)
proxy_hostname = Option("proxy", "hostname", get_default_fqdn, "The virtual host name of the proxy", is_str)
proxy_ssl_enabled = Option("proxy", "ssl_enabled", False, "Terminate ssl in the proxy", is_bool)
proxy_ssl_redirect_http = Option("proxy", "ssl_redirect_http", True, "Redirect http to https", is_bool)
proxy_ssl_listen_ports = Option("proxy", "ssl_listen_ports", [443], "The ssl ports the proxy listens on", is_int_list)
proxy_provider = Option("proxy", "provider", None, "The proxy implementation: nginx or apache", is_str_opt)
proxy_nginx_dir = Option("proxy", "nginx_dir", "/etc/nginx", "The configuration directory of nginx", is_str)
proxy_apache_dir = Option("proxy", "apache_dir", "/etc/apache2", "The configuration directory of apache", is_str)

#############################
# Services
#############################
systemd_unit_dir = Option("service", "unit_dir", "/etc/systemd/system", "Where systemd unit files are written", is_str)
