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
chDB error types.

Every failure reported by the native engine surfaces as ChdbError.
Initialization problems and host-side contract violations get their
own subclasses so callers can tell them apart:

    ChdbError
    ├── LoadError
    │   ├── LibraryLoadError
    │   └── SymbolResolutionError
    ├── InvalidArgumentError
    ├── UsageError
    └── DirectoryNotFoundError
"""

from typing import Optional, Sequence


class ChdbError(Exception):
    """Base error for the chDB binding.

    Raised directly for native connect and query failures.
    """

    def __init__(self, message: str, sql: Optional[str] = None):
        super().__init__(message)
        self.message = message
        # The query that failed, when the error came from one
        self.sql = sql

    def __str__(self) -> str:
        return self.message


class LoadError(ChdbError):
    """The native library could not be initialized."""


class LibraryLoadError(LoadError):
    """The shared library file is missing or could not be opened."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class SymbolResolutionError(LoadError):
    """One or more required entry points are missing from the library."""

    def __init__(self, message: str, path: Optional[str] = None,
                 missing: Sequence[str] = ()):
        super().__init__(message)
        self.path = path
        self.missing = tuple(missing)


class InvalidArgumentError(ChdbError, ValueError):
    """A host value cannot be passed to the native engine."""


class UsageError(ChdbError):
    """An object was used after close/dispose, or the library is unloaded."""


class DirectoryNotFoundError(ChdbError):
    """The database directory is missing and creation was not requested."""
