"""Модель данных и генерация идентификаторов."""

import json
import random
from ipaddress import IPv4Address, IPv6Address

import pytest

from doubles import ReferenceTracker
from tracker_probe.announcer import Announcer, Scraper
from tracker_probe.identity import PEER_ID_PREFIX, new_info_hash, new_peer, new_peers
from tracker_probe.schemas import (
    AnnounceRequest,
    Peer,
    ProbeTest,
    Scrape,
    ScrapeRequest,
    ScrapeResponse,
    TestStatus,
    TrackerResult,
    TrackerType,
    normalize_ip,
)

pytestmark = [pytest.mark.unit]


class TestPeer:

    def test_equality_over_id_ip_and_port(self):
        peer = Peer(id=b"a" * 20, ip=IPv4Address("1.2.3.4"), port=8080)

        assert peer == Peer(id=b"a" * 20, ip=IPv4Address("1.2.3.4"), port=8080)
        assert peer != Peer(id=b"b" * 20, ip=IPv4Address("1.2.3.4"), port=8080)
        assert peer != Peer(id=b"a" * 20, ip=IPv4Address("1.2.3.5"), port=8080)
        assert peer != Peer(id=b"a" * 20, ip=IPv4Address("1.2.3.4"), port=8081)

    def test_matches_compact_record_without_id(self):
        announced = Peer(id=b"a" * 20, ip=IPv4Address("1.2.3.4"), port=8080)
        compact = Peer(ip=IPv4Address("127.0.0.1"), port=8080)

        assert compact.matches(announced, compare_ip=False)
        assert not compact.matches(announced, compare_ip=True)

    def test_matches_rejects_different_id(self):
        announced = Peer(id=b"a" * 20, ip=IPv4Address("1.2.3.4"), port=8080)
        returned = Peer(id=b"b" * 20, ip=IPv4Address("1.2.3.4"), port=8080)

        assert not returned.matches(announced)

    def test_matches_ipv4_mapped_address(self):
        announced = Peer(ip=IPv4Address("1.2.3.4"), port=1)
        returned = Peer(ip=IPv6Address("::ffff:1.2.3.4"), port=1)

        assert returned.matches(announced, compare_ip=True)

    def test_normalize_ip(self):
        assert normalize_ip(IPv6Address("::ffff:10.0.0.1")) == IPv4Address("10.0.0.1")
        assert normalize_ip(IPv6Address("2001:db8::1")) == IPv6Address("2001:db8::1")
        assert normalize_ip(None) is None


class TestAnnounceRequest:

    def test_seeder_and_leecher(self):
        peer = Peer(id=b"a" * 20, ip=IPv4Address("1.2.3.4"), port=1)
        leecher = AnnounceRequest(info_hash=b"x" * 20, peer=peer, left=100)

        assert not leecher.is_seeder
        assert leecher.replace(left=0).is_seeder
        assert leecher.left == 100


class TestIdentity:

    def test_new_info_hash_length(self):
        rng = random.Random(0)

        assert len(new_info_hash(rng)) == 20
        assert new_info_hash(rng) != new_info_hash(rng)

    def test_new_peer(self):
        rng = random.Random(0)
        peer = new_peer(rng)
        other = new_peer(rng)

        assert len(peer.id) == 20
        assert peer.id.startswith(PEER_ID_PREFIX)
        assert 1024 <= peer.port <= 65535
        assert isinstance(peer.ip, IPv4Address)
        assert not peer.ip.is_loopback and not peer.ip.is_multicast
        assert peer.id != other.id

    def test_new_peers_are_distinct(self):
        peers = new_peers(50, random.Random(7))

        assert len({peer.port for peer in peers}) == 50
        assert len({peer.id for peer in peers}) == 50


class TestTrackerResult:

    def test_passed_and_get(self):
        result = TrackerResult(tracker="udp://t:1", type=TrackerType.UDP)
        result.add(ProbeTest(name="a", run=True, status=TestStatus.PASSED, result=True))
        result.add(ProbeTest.skipped("b", "причина"))

        assert result.passed("a")
        assert not result.passed("b")
        assert not result.passed("missing")
        assert result.get("b").not_run_reason == "причина"

    def test_freeze_is_detached_and_serializable(self):
        result = TrackerResult(tracker="http://t/announce", type=TrackerType.HTTP, supports_compact=True,
                               supports_non_compact=False, supports_ip_spoofing=True)
        result.add(ProbeTest(name="a", run=True, status=TestStatus.ERROR, error="timeout",
                             error_type="TrackerTimeoutError"))

        report = result.freeze()
        result.add(ProbeTest.skipped("later", "x"))

        assert len(report.tests) == 1
        data = json.loads(json.dumps(report.to_dict()))
        assert data["type"] == "http"
        assert data["supports_compact"] is True
        assert data["supports_ip_spoofing"] is True
        assert data["tests"][0]["status"] == "error"
        assert data["tests"][0]["error_type"] == "TrackerTimeoutError"

    def test_udp_report_has_no_compact_flags(self):
        report = TrackerResult(tracker="t:1", type=TrackerType.UDP).freeze()

        assert "supports_compact" not in report.to_dict()


class TestCapabilities:

    def test_announcers_satisfy_protocol(self):
        assert isinstance(ReferenceTracker(), Announcer)
        assert not isinstance(ReferenceTracker(), Scraper)

    def test_scrape_response_defaults(self):
        request = ScrapeRequest(info_hashes=(b"x" * 20,))
        response = ScrapeResponse()
        response.files[request.info_hashes[0]] = Scrape(complete=1)

        assert response.files[b"x" * 20] == Scrape(complete=1, downloaded=0, incomplete=0)
