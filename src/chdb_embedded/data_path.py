# Copyright 2025 Sushanth (https://github.com/sushanthpy)
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Database location and engine startup arguments.

A database is addressed by a path or URI:

    ":memory:" / "" / None      temporary directory, removed on close
    "/var/lib/mydb"             directory, created unless opened read-only
    "file:mydb?readonly=1"      URI with query parameters

Query parameters (and keyword options, which override them) become
``--key=value`` flags for the engine.
"""

import logging
import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

from .constants import CREATE, READONLY, READWRITE
from .errors import DirectoryNotFoundError, InvalidArgumentError

logger = logging.getLogger(__name__)

# Options consumed by the binding itself, never passed to the engine
_EXCLUDED_KEYS = ("results_as_hash", "readonly", "readwrite", "flags")

MEMORY_PATH = ":memory:"


def _is_set(value: Any) -> bool:
    return value is not None and value is not False


def _flag_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class DataPath:
    """Resolved database directory, open mode and engine arguments."""

    def __init__(self, uri: Optional[str] = None, options: Optional[Dict[str, Any]] = None):
        self.dir_path: Optional[str] = None
        self.is_tmp = False
        self.query_params: Dict[str, Any] = {}
        self.mode = 0

        path = self._parse_uri(uri)
        if options:
            self.query_params.update({str(k): v for k, v in options.items()})
        self._check_params()
        self._resolve_directory(path)

    def generate_arguments(self) -> List[str]:
        """Build the engine argv for this database."""
        args = ["clickhouse", f"--path={self.dir_path}"]

        for key, value in self.query_params.items():
            if key in _EXCLUDED_KEYS:
                continue
            if key == "udf_path":
                udf = _flag_value(value)
                args += [
                    "--",
                    f"--user_scripts_path={udf}",
                    f"--user_defined_executable_functions_config={udf}/*.xml",
                ]
            elif key == "--":
                args.append("--")
            elif value is None:
                args.append(f"--{key}")
            else:
                args.append(f"--{key}={_flag_value(value)}")

        if self.mode & READONLY:
            args.append("--readonly=1")

        return args

    @property
    def readonly(self) -> bool:
        return bool(self.mode & READONLY)

    def close(self) -> None:
        """Remove the directory if it was created as a temporary one."""
        if self.is_tmp and self.dir_path and os.path.isdir(self.dir_path):
            logger.debug("Removing temporary database directory %s", self.dir_path)
            shutil.rmtree(self.dir_path, ignore_errors=True)

    # =========================================================================
    # Parsing
    # =========================================================================

    def _parse_uri(self, uri: Optional[str]) -> Optional[str]:
        if uri is None:
            return None
        uri = os.fspath(uri)
        path, _, query = uri.partition("?")
        if query:
            parsed = parse_qs(query, keep_blank_values=True)
            self.query_params = {key: values[-1] for key, values in parsed.items()}
        if path.startswith("file:"):
            path = path[len("file:"):]
        return path

    def _check_params(self) -> None:
        params = self.query_params
        readonly = _is_set(params.get("readonly"))
        readwrite = _is_set(params.get("readwrite"))

        self.mode = READWRITE | CREATE
        if readonly:
            self.mode = READONLY

        if readwrite:
            if readonly:
                raise InvalidArgumentError("conflicting options: readonly and readwrite")
            self.mode = READWRITE

        if not _is_set(params.get("flags")):
            return
        if readonly or readwrite:
            raise InvalidArgumentError("conflicting options: flags with readonly and/or readwrite")

        flags = params["flags"]
        try:
            self.mode = flags if isinstance(flags, int) else int(str(flags), 0)
        except ValueError as exc:
            raise InvalidArgumentError(f"invalid flags value: {flags!r}") from exc

    def _resolve_directory(self, path: Optional[str]) -> None:
        if not path or path == MEMORY_PATH:
            self.is_tmp = True
            self.dir_path = tempfile.mkdtemp(prefix="chdb_")
            return

        self.dir_path = os.path.abspath(os.path.expanduser(path))
        if os.path.isdir(self.dir_path):
            return
        if not self.mode & CREATE:
            raise DirectoryNotFoundError(f"Directory {self.dir_path} required")
        os.makedirs(self.dir_path, mode=0o755, exist_ok=True)
