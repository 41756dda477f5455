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
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from typing import Optional, Union

try:
    import grp
    import pwd
except ImportError:
    # windows
    pwd = None
    grp = None

LOGGER = logging.getLogger(__name__)


class LocalIO:
    """
    This class provides handler IO methods: the file-state applier and the command runner of a run
    """

    def __repr__(self) -> str:
        return "%s()" % self.__class__.__name__

    def hash_file(self, path: str) -> str:
        """
        Return the sha1sum of the file at path

        :param path: The path of the file to hash the content of
        :return: The sha1sum in a hex string
        """
        sha1sum = hashlib.sha1()
        with open(path, "rb") as f:
            for block in iter(lambda: f.read(65536), b""):
                sha1sum.update(block)

        return sha1sum.hexdigest()

    def read(self, path: str) -> str:
        """
        Read in the file in path and return its content as string
        """
        with open(path, "rb") as fd:
            return fd.read().decode("utf-8")

    def run(
        self,
        command: str,
        arguments: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> tuple[str, str, int]:
        """
        Execute a command with the given argument and return the result

        :param command: The command to execute.
        :param arguments: The arguments of the command
        :param env: A dictionary with environment variables.
        :param cwd: The working dir to execute the command in.
        :param timeout: The timeout for this command, the command is killed when it expires.
        :return: A tuple with (stdout, stderr, returncode)
        :raise subprocess.TimeoutExpired: The command did not finish in time
        """
        current_env = os.environ.copy()
        if env is not None:
            current_env.update(env)

        cmds = [command] + list(arguments)
        LOGGER.debug("Running %s", cmds)
        with subprocess.Popen(cmds, stdout=subprocess.PIPE, stderr=subprocess.PIPE, env=current_env, cwd=cwd) as result:
            try:
                data = result.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                result.kill()
                result.communicate()
                raise

        return (
            data[0].strip().decode("utf-8", errors="replace"),
            data[1].strip().decode("utf-8", errors="replace"),
            result.returncode,
        )

    def file_exists(self, path: str) -> bool:
        """
        Check if a given file exists
        """
        return os.path.lexists(path)

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(path)

    def list_dir(self, path: str) -> list[str]:
        """
        The names of the entries in a directory
        """
        return os.listdir(path)

    def file_stat(self, path: str) -> dict[str, Union[int, str]]:
        """
        Do a stat call on a file

        :param path: The file or direct to stat
        :return: A dict with the owner, group and permissions of the given path
        """
        stat_result = os.stat(path)
        status: dict[str, Union[int, str]] = {}
        if pwd is not None and grp is not None:
            status["owner"] = self.user_name(stat_result.st_uid)
            status["group"] = self.group_name(stat_result.st_gid)
        status["permissions"] = int(oct(stat_result.st_mode)[-3:])

        return status

    def user_name(self, uid: int) -> Union[int, str]:
        try:
            return pwd.getpwuid(uid).pw_name
        except KeyError:
            return uid

    def group_name(self, gid: int) -> Union[int, str]:
        try:
            return grp.getgrgid(gid).gr_name
        except KeyError:
            return gid

    def remove(self, path: str) -> None:
        """
        Remove a file
        """
        os.remove(path)

    def put(self, path: str, content: bytes) -> None:
        """
        Put the given content at the given path

        :param path: The location where to write the file
        :param content: The binarystring content to write to the file.
        """
        with open(path, "wb+") as fd:
            fd.write(content)

    def get_user(self, name: str) -> Optional[dict[str, Union[int, str]]]:
        """
        Look up a user account

        :return: A dict with uid, gid, home, shell and comment or None when the user does not exist
        """
        if pwd is None:
            return None
        try:
            entry = pwd.getpwnam(name)
        except KeyError:
            return None
        return {
            "uid": entry.pw_uid,
            "gid": entry.pw_gid,
            "home": entry.pw_dir,
            "shell": entry.pw_shell,
            "comment": entry.pw_gecos,
        }

    def get_group(self, name: str) -> Optional[dict[str, Union[int, list[str]]]]:
        """
        Look up a group

        :return: A dict with gid and members or None when the group does not exist
        """
        if grp is None:
            return None
        try:
            entry = grp.getgrnam(name)
        except KeyError:
            return None
        return {"gid": entry.gr_gid, "members": list(entry.gr_mem)}

    def _get_gid(self, name: str) -> Optional[int]:
        """Returns a gid, given a group name."""
        group = self.get_group(name)
        return group["gid"] if group is not None else None

    def _get_uid(self, name: str) -> Optional[int]:
        """Returns an uid, given a user name."""
        user = self.get_user(name)
        return user["uid"] if user is not None else None

    def chown(self, path: str, user: Optional[str] = None, group: Optional[str] = None) -> None:
        """
        Change the ownership of a file.

        :param path: The path of the file or directory to change the ownership of.
        :param user: The user to change to
        :param group: The group to change to
        """
        if user is None and group is None:
            raise ValueError("user and/or group must be set")

        # -1 means don't change it
        _user = -1
        if user is not None:
            uid = self._get_uid(user)
            if uid is None:
                raise LookupError("no such user: {!r}".format(user))
            _user = uid

        _group = -1
        if group is not None:
            gid = self._get_gid(group)
            if gid is None:
                raise LookupError("no such group: {!r}".format(group))
            _group = gid

        os.chown(path, _user, _group)

    def chmod(self, path: str, permissions: str) -> None:
        """
        Change the permissions

        :param path: The path of the file or directory to change the permission of.
        :param permissions: An octal string with the permission to set.
        """
        os.chmod(path, int(permissions, 8))

    def mkdir(self, path: str, recursive: bool = False) -> None:
        """
        Create a directory

        :param path: Create this directory.
        :param recursive: Create missing parents as well, otherwise the parent needs to exist.
        """
        if recursive:
            os.makedirs(path)
        else:
            os.mkdir(path)

    def rmdir(self, path: str) -> None:
        """
        Remove a directory and its content

        :param path: The directory to remove
        """
        shutil.rmtree(path)
