#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Type hints used internally by this package.
"""

from __future__ import annotations

from typing import (
    Dict, List, Optional, Union, Any, Set, Tuple, Type, Callable, Awaitable,
    Mapping, MutableMapping, Iterable, Iterator, Sequence,
    AsyncContextManager, AsyncIterable, AsyncIterator, NamedTuple, TypeVar, Generic,
    TYPE_CHECKING,
  )

from types import TracebackType

from typing_extensions import Self, TypeAlias

HostAndPort = Tuple[str, int]
"""An (ip_address, port) tuple as used by the socket module."""

Jsonable = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]
"""A type that can be serialized to JSON."""

JsonableDict = Dict[str, Jsonable]
"""A dictionary that can be serialized to JSON."""
