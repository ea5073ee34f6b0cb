#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SearchTarget -- The value carried in ST (search target) and NT (notification type) headers.
"""

from __future__ import annotations

from enum import Enum

from .internal_types import *
from .constants import DEFAULT_DOMAIN, ST_ALL, ST_ROOT_DEVICE

class SearchTargetKind(Enum):
    ALL = "all"
    ROOT_DEVICES = "root_devices"
    DEVICE_BY_UUID = "device_by_uuid"
    DEVICE_BY_TYPE = "device_by_type"
    SERVICE_BY_TYPE = "service_by_type"

class SearchTarget:
    """One of:

         ssdp:all                                   SearchTarget.all()
         upnp:rootdevice                            SearchTarget.root_devices()
         uuid:<id>                                  SearchTarget.device_by_uuid(id)
         urn:<domain>:device:<type>:<version>       SearchTarget.device_by_type(type, version, domain)
         urn:<domain>:service:<type>:<version>      SearchTarget.service_by_type(type, version, domain)

       Instances are immutable and hashable.
    """

    kind: SearchTargetKind
    uuid: Optional[str] = None
    domain: Optional[str] = None
    type_name: Optional[str] = None
    version: Optional[str] = None

    def __init__(
            self,
            kind: SearchTargetKind,
            uuid: Optional[str]=None,
            domain: Optional[str]=None,
            type_name: Optional[str]=None,
            version: Optional[Union[str, int]]=None,
          ) -> None:
        if kind == SearchTargetKind.DEVICE_BY_UUID:
            if uuid is None or uuid == '':
                raise ValueError("A device UUID is required")
        elif kind in (SearchTargetKind.DEVICE_BY_TYPE, SearchTargetKind.SERVICE_BY_TYPE):
            if type_name is None or type_name == '' or version is None or str(version) == '':
                raise ValueError("A type name and version are required")
            if domain is None or domain == '':
                domain = DEFAULT_DOMAIN
        self.kind = kind
        self.uuid = uuid
        self.domain = domain
        self.type_name = type_name
        self.version = None if version is None else str(version)

    @classmethod
    def all(cls) -> SearchTarget:
        return cls(SearchTargetKind.ALL)

    @classmethod
    def root_devices(cls) -> SearchTarget:
        return cls(SearchTargetKind.ROOT_DEVICES)

    @classmethod
    def device_by_uuid(cls, uuid: str) -> SearchTarget:
        return cls(SearchTargetKind.DEVICE_BY_UUID, uuid=uuid)

    @classmethod
    def device_by_type(cls, type_name: str, version: Union[str, int], domain: Optional[str]=None) -> SearchTarget:
        return cls(SearchTargetKind.DEVICE_BY_TYPE, domain=domain, type_name=type_name, version=version)

    @classmethod
    def service_by_type(cls, type_name: str, version: Union[str, int], domain: Optional[str]=None) -> SearchTarget:
        return cls(SearchTargetKind.SERVICE_BY_TYPE, domain=domain, type_name=type_name, version=version)

    @classmethod
    def parse(cls, value: str) -> SearchTarget:
        """Parse an ST or NT header value. Raises ValueError if the value is not one of the
           recognized forms."""
        s = value.strip()
        if s == ST_ALL:
            return cls.all()
        if s == ST_ROOT_DEVICE:
            return cls.root_devices()
        if s.startswith('uuid:'):
            return cls.device_by_uuid(s[len('uuid:'):])
        if s.startswith('urn:'):
            parts = s.split(':')
            # urn:<domain>:<device|service>:<type>:<version>
            if len(parts) == 5 and parts[2] in ('device', 'service') and all(p != '' for p in parts):
                if parts[2] == 'device':
                    return cls.device_by_type(parts[3], parts[4], domain=parts[1])
                return cls.service_by_type(parts[3], parts[4], domain=parts[1])
        raise ValueError(f"Could not parse {value!r} as a search target")

    def render(self, domain_override: Optional[str]=None) -> str:
        """Render the header value. domain_override replaces the domain of device and service types."""
        if self.kind == SearchTargetKind.ALL:
            return ST_ALL
        if self.kind == SearchTargetKind.ROOT_DEVICES:
            return ST_ROOT_DEVICE
        if self.kind == SearchTargetKind.DEVICE_BY_UUID:
            return f"uuid:{self.uuid}"
        domain = self.domain if domain_override is None else domain_override
        category = 'device' if self.kind == SearchTargetKind.DEVICE_BY_TYPE else 'service'
        return f"urn:{domain}:{category}:{self.type_name}:{self.version}"

    def _key(self) -> Tuple[Any, ...]:
        return (self.kind, self.uuid, self.domain, self.type_name, self.version)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, SearchTarget):
            return False
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return self.render()

    def __repr__(self) -> str:
        return f"SearchTarget({self.render()!r})"
