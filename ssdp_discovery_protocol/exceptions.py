#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

from __future__ import annotations

from typing import Optional

class SsdpError(Exception):
  """Base class for all error exceptions defined by this package."""
  pass

class SetupError(SsdpError):
  """A socket could not be opened, bound or joined to a multicast group. Fatal to the
     operation that raised it; never retried."""
  pass

class InterfaceUnavailableError(SetupError):
  """The requested interface has no address of the requested IP family."""
  interface_name: str
  ip_version: str

  def __init__(self, interface_name: str, ip_version: str):
    super().__init__(f"Interface {interface_name!r} has no {ip_version} address")
    self.interface_name = interface_name
    self.ip_version = ip_version

class BindFailedError(SetupError):
  """The operating system refused to create or bind a socket."""
  address: str
  port: int
  os_error: Optional[OSError]

  def __init__(self, address: str, port: int, os_error: Optional[OSError]=None):
    super().__init__(f"Unable to bind to [{address}]:{port}: {os_error}")
    self.address = address
    self.port = port
    self.os_error = os_error

class JoinFailedError(SetupError):
  """The operating system refused to join a multicast group."""
  group: str
  os_error: Optional[OSError]

  def __init__(self, group: str, os_error: Optional[OSError]=None):
    super().__init__(f"Unable to join multicast group {group}: {os_error}")
    self.group = group
    self.os_error = os_error

class NoUsableInterfaceError(SetupError):
  """No candidate interface could be opened (and, for listening, joined to the multicast group)."""
  ip_version: str
  operation: str

  def __init__(self, ip_version: str, operation: str):
    super().__init__(f"No {ip_version} interface could be opened for {operation}")
    self.ip_version = ip_version
    self.operation = operation

class ParseError(SsdpError):
  """A datagram could not be decoded. Always recovered locally by dropping the datagram."""
  pass

class MalformedStartLineError(ParseError):
  line: str

  def __init__(self, line: str):
    super().__init__(f"Malformed start line: {line!r}")
    self.line = line

class MalformedHeaderError(ParseError):
  line: str

  def __init__(self, line: str):
    super().__init__(f"Malformed header: {line!r}")
    self.line = line

class MissingRequiredHeaderError(ParseError):
  name: str

  def __init__(self, name: str):
    super().__init__(f"Missing required header: {name}")
    self.name = name

class UnsupportedNotificationTypeError(ParseError):
  nts: str

  def __init__(self, nts: str):
    super().__init__(f"Unsupported notification sub-type: {nts!r}")
    self.nts = nts

class UnexpectedMessageError(ParseError):
  """A well-formed message of the wrong kind; e.g., an M-SEARCH where a NOTIFY was expected."""
  start_line: str

  def __init__(self, start_line: str):
    super().__init__(f"Unexpected message: {start_line!r}")
    self.start_line = start_line

class SsdpIoError(SsdpError):
  """A send or receive failed on an open socket."""
  os_error: Optional[BaseException]

  def __init__(self, os_error: Optional[BaseException]=None):
    super().__init__(f"SSDP I/O error: {os_error}")
    self.os_error = os_error

class TimedOut(SsdpError):
  """A bounded receive reached its deadline. This is the expected end of a search, not a failure."""
  pass

class UnsupportedVersionError(SsdpError):
  """The requested operation is not defined for the selected protocol version."""
  version: str
  operation: str

  def __init__(self, version: str, operation: str):
    super().__init__(f"{operation} is not supported by UPnP {version}")
    self.version = version
    self.operation = operation
