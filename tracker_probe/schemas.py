from dataclasses import dataclass, field, replace
from enum import Enum, auto
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import Any

INFO_HASH_LENGTH = 20
PEER_ID_LENGTH = 20

IPAddress = IPv4Address | IPv6Address


class TrackerType(Enum):
    UDP = auto()
    HTTP = auto()


class Event(Enum):
    NONE = "none"
    STARTED = "started"
    STOPPED = "stopped"
    COMPLETED = "completed"
    INVALID = "invalid"  # заведомо неверное событие для негативных проверок


def normalize_ip(ip: IPAddress | None) -> IPAddress | None:
    """ IPv4-mapped IPv6 (::ffff:1.2.3.4) приводится к IPv4 """
    if isinstance(ip, IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


@dataclass(slots=True, frozen=True)
class Peer:
    id: bytes = b""
    ip: IPAddress | None = None
    port: int = 0

    def matches(self, other: "Peer", compare_ip: bool = True) -> bool:
        """
        Сравнение пира из ответа трекера с объявленным пиром.

        В компактных ответах и в UDP нет peer id, поэтому id сравниваются только если он есть с обеих сторон.
        IP сравнивается только по запросу: без поддержки подмены IP трекер подставляет адрес отправителя.
        """
        if self.port != other.port:
            return False
        if self.id and other.id and self.id != other.id:
            return False
        if compare_ip and normalize_ip(self.ip) != normalize_ip(other.ip):
            return False
        return True

    def __str__(self) -> str:
        host = f"[{self.ip}]" if isinstance(self.ip, IPv6Address) else str(self.ip)
        return f"{host}:{self.port} ({self.id!r})"

    @classmethod
    def from_text_ip(cls, peer_id: bytes, ip: str, port: int) -> "Peer":
        return cls(id=peer_id, ip=normalize_ip(ip_address(ip)), port=port)


@dataclass(slots=True, frozen=True)
class AnnounceRequest:
    info_hash: bytes
    peer: Peer
    uploaded: int = 0
    downloaded: int = 0
    left: int = 0
    event: Event = Event.NONE
    numwant: int = 50
    compact: bool = False

    @property
    def is_seeder(self) -> bool:
        return self.left == 0

    def replace(self, **changes) -> "AnnounceRequest":
        return replace(self, **changes)


@dataclass(slots=True, frozen=True)
class AnnounceResponse:
    interval: int = 0
    min_interval: int = 0
    complete: int = 0
    incomplete: int = 0
    peers: tuple[Peer, ...] = ()


@dataclass(slots=True, frozen=True)
class ErrorResponse:
    message: str


@dataclass(slots=True, frozen=True)
class WarningResponse:
    message: str


AnnounceResult = AnnounceResponse | ErrorResponse | WarningResponse


@dataclass(slots=True, frozen=True)
class ScrapeRequest:
    info_hashes: tuple[bytes, ...]


@dataclass(slots=True, frozen=True)
class Scrape:
    complete: int = 0
    downloaded: int = 0
    incomplete: int = 0


@dataclass(slots=True)
class ScrapeResponse:
    files: dict[bytes, Scrape] = field(default_factory=dict)


class TestStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(slots=True, frozen=True)
class ProbeTest:
    name: str
    run: bool = False
    not_run_reason: str | None = None
    status: TestStatus = TestStatus.SKIPPED
    result: Any = None
    error: str | None = None
    error_type: str | None = None

    @classmethod
    def skipped(cls, name: str, reason: str) -> "ProbeTest":
        return cls(name=name, not_run_reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "run": self.run,
            "not_run_reason": self.not_run_reason,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass(slots=True, frozen=True)
class TrackerReport:
    tracker: str
    type: TrackerType
    supports_announcing_peer_not_in_peer_list: bool
    supports_ip_spoofing: bool
    supports_optimized_seeder_response: bool
    supports_compact: bool | None
    supports_non_compact: bool | None
    tests: tuple[ProbeTest, ...]

    def to_dict(self) -> dict[str, Any]:
        data = {
            "tracker": self.tracker,
            "type": self.type.name.lower(),
            "supports_announcing_peer_not_in_peer_list": self.supports_announcing_peer_not_in_peer_list,
            "supports_ip_spoofing": self.supports_ip_spoofing,
            "supports_optimized_seeder_response": self.supports_optimized_seeder_response,
            "tests": [test.to_dict() for test in self.tests],
        }
        if self.type == TrackerType.HTTP:
            data["supports_compact"] = self.supports_compact
            data["supports_non_compact"] = self.supports_non_compact
        return data


@dataclass(slots=True)
class TrackerResult:
    tracker: str
    type: TrackerType
    supports_announcing_peer_not_in_peer_list: bool = False
    supports_ip_spoofing: bool = False
    supports_optimized_seeder_response: bool = False
    supports_compact: bool | None = None
    supports_non_compact: bool | None = None
    tests: list[ProbeTest] = field(default_factory=list)

    def add(self, test: ProbeTest) -> None:
        self.tests.append(test)

    def get(self, name: str) -> ProbeTest | None:
        for test in self.tests:
            if test.name == name:
                return test
        return None

    def passed(self, name: str) -> bool:
        test = self.get(name)
        return test is not None and test.status == TestStatus.PASSED

    def freeze(self) -> TrackerReport:
        return TrackerReport(
            tracker=self.tracker,
            type=self.type,
            supports_announcing_peer_not_in_peer_list=self.supports_announcing_peer_not_in_peer_list,
            supports_ip_spoofing=self.supports_ip_spoofing,
            supports_optimized_seeder_response=self.supports_optimized_seeder_response,
            supports_compact=self.supports_compact,
            supports_non_compact=self.supports_non_compact,
            tests=tuple(self.tests),
        )
