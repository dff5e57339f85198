import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from httpx import AsyncClient, Timeout

from tracker_probe import probes
from tracker_probe.announcer import Announcer
from tracker_probe.config import Settings, settings as default_settings
from tracker_probe.exceptions import ConformanceError, TrackerProbeError
from tracker_probe.http_client import HTTPAnnouncer
from tracker_probe.log_conf import logging
from tracker_probe.schemas import ProbeTest, TestStatus, TrackerReport, TrackerResult, TrackerType
from tracker_probe.udp_client import TransactionCounter, UDPAnnouncer

logger = logging.getLogger(__name__)

ProbeFunc = Callable[[Announcer, TrackerResult, random.Random, int], Awaitable[Any]]


@dataclass(slots=True, frozen=True)
class Probe:
    """
    Описание проверки.

    capability - флаг TrackerResult, который выставляется по результату.
    requires - проверки, которые должны пройти до этой, иначе она пропускается.
    must_be_true - результат False записывается как провал (негативные проверки).
    """
    name: str
    run: ProbeFunc
    capability: str | None = None
    requires: tuple[str, ...] = ()
    must_be_true: bool = False
    failure_reason: str | None = None


SELF_EXCLUSION = "tracker_supports_announcing_peer_not_in_peer_list"
IP_SPOOFING = "tracker_supports_ip_spoofing"
OPTIMIZED_SEEDER = "tracker_supports_optimized_seeder_response"

COMPACT_PROBES = (
    Probe("tracker_supports_compact_announce", probes.supports_compact, capability="supports_compact"),
    Probe("tracker_supports_non_compact_announce", probes.supports_non_compact, capability="supports_non_compact"),
)

COMMON_PROBES = (
    Probe(SELF_EXCLUSION, probes.supports_announcing_peer_not_in_peer_list,
          capability="supports_announcing_peer_not_in_peer_list"),
    Probe(IP_SPOOFING, probes.supports_ip_spoofing, capability="supports_ip_spoofing",
          requires=(SELF_EXCLUSION,)),
    Probe(OPTIMIZED_SEEDER, probes.supports_optimized_seeder_response,
          capability="supports_optimized_seeder_response"),
    Probe("basic_announce", probes.basic_announce, requires=(SELF_EXCLUSION,)),
    Probe("basic_seeder_announce", probes.basic_seeder_announce, requires=(SELF_EXCLUSION,)),
    Probe("check_returned_peers", probes.check_returned_peers,
          requires=(SELF_EXCLUSION, IP_SPOOFING, OPTIMIZED_SEEDER)),
)


def _rejection(name: str, run: ProbeFunc, what: str) -> Probe:
    return Probe(name, run, must_be_true=True, failure_reason=f"трекер принял announce с {what}")


NUMERIC_VALIDATION_PROBES = (
    _rejection("invalid_negative_uploaded", probes.invalid_negative_uploaded, "отрицательным uploaded"),
    _rejection("invalid_negative_downloaded", probes.invalid_negative_downloaded, "отрицательным downloaded"),
    _rejection("invalid_negative_left", probes.invalid_negative_left, "отрицательным left"),
    _rejection("invalid_event", probes.invalid_event, "неверным event"),
)

LENGTH_VALIDATION_PROBES = (
    _rejection("invalid_short_infohash", probes.invalid_short_infohash, "слишком коротким info_hash"),
    _rejection("invalid_long_infohash", probes.invalid_long_infohash, "слишком длинным info_hash"),
    _rejection("invalid_short_peer_id", probes.invalid_short_peer_id, "слишком коротким peer_id"),
    _rejection("invalid_long_peer_id", probes.invalid_long_peer_id, "слишком длинным peer_id"),
)

UDP_VALIDATION_PROBES = NUMERIC_VALIDATION_PROBES
UDP_LENGTH_SKIP_REASON = "в UDP пакете длина info_hash и peer_id фиксирована, неверную длину не передать"

HTTP_VALIDATION_PROBES = LENGTH_VALIDATION_PROBES + NUMERIC_VALIDATION_PROBES


class ProbeSession:
    """
    Прогон проверок по порядку против одного клиента трекера.

    Возможности, найденные ранними проверками, попадают в TrackerResult и читаются следующими.
    Сбой одной проверки записывается в ее ProbeTest и не останавливает остальные.
    """

    def __init__(
            self,
            announcer: Announcer,
            result: TrackerResult,
            rng: random.Random | None = None,
            numwant: int | None = None
    ):
        self.announcer = announcer
        self.result = result
        self.rng = rng or random.Random()
        self.numwant = numwant if numwant is not None else default_settings.numwant

    def _missing_requirement(self, probe: Probe) -> str | None:
        for name in probe.requires:
            if not self.result.passed(name):
                return f"зависит от проверки {name}, которая не прошла"
        return None

    async def run_probe(self, probe: Probe) -> ProbeTest:
        reason = self._missing_requirement(probe)
        if reason is not None:
            logger.info(f"Пропускаем проверку {probe.name}: {reason}")
            test = ProbeTest.skipped(probe.name, reason)
            self.result.add(test)
            return test

        logger.info(f"Начинаем проверку {probe.name} трекера {self.result.tracker}")
        try:
            value = await probe.run(self.announcer, self.result, self.rng, self.numwant)
        except ConformanceError as exception:
            logger.info(f"Проверка {probe.name} не пройдена: {exception}")
            test = ProbeTest(name=probe.name, run=True, status=TestStatus.FAILED,
                             error=str(exception), error_type=exception.__class__.__name__)
        except TrackerProbeError as exception:
            logger.warning(f"Ошибка во время проверки {probe.name}: {exception.__class__.__name__}: {exception}")
            test = ProbeTest(name=probe.name, run=True, status=TestStatus.ERROR,
                             error=str(exception), error_type=exception.__class__.__name__)
        else:
            if probe.must_be_true and not value:
                test = ProbeTest(name=probe.name, run=True, status=TestStatus.FAILED, result=value,
                                 error=probe.failure_reason)
            else:
                test = ProbeTest(name=probe.name, run=True, status=TestStatus.PASSED, result=value)
            logger.info(f"Проверка {probe.name} завершена: {test.status.value}, результат={value}")

        if probe.capability is not None:
            setattr(self.result, probe.capability, test.status == TestStatus.PASSED and bool(test.result))
        self.result.add(test)
        return test

    async def run(self, battery: tuple[Probe, ...]) -> TrackerResult:
        for probe in battery:
            await self.run_probe(probe)
        return self.result

    def skip_all(self, battery: tuple[Probe, ...], reason: str) -> None:
        for probe in battery:
            self.result.add(ProbeTest.skipped(probe.name, reason))


async def probe_udp_tracker(
        address: str,
        settings: Settings | None = None,
        counter: TransactionCounter | None = None,
        rng: random.Random | None = None
) -> TrackerReport:
    settings = settings or default_settings
    result = TrackerResult(tracker=address, type=TrackerType.UDP)
    async with UDPAnnouncer.from_address(address, timeout=settings.udp_timeout_sec, counter=counter) as announcer:
        session = ProbeSession(announcer, result, rng=rng, numwant=settings.numwant)
        await session.run(COMMON_PROBES)
        session.skip_all(LENGTH_VALIDATION_PROBES, UDP_LENGTH_SKIP_REASON)
        await session.run(UDP_VALIDATION_PROBES)
    return result.freeze()


async def probe_http_tracker(
        announce_url: str,
        client: AsyncClient | None = None,
        settings: Settings | None = None,
        rng: random.Random | None = None
) -> TrackerReport:
    settings = settings or default_settings
    if client is None:
        async with AsyncClient(timeout=Timeout(settings.http_timeout_sec)) as own_client:
            return await probe_http_tracker(announce_url, client=own_client, settings=settings, rng=rng)

    result = TrackerResult(tracker=announce_url, type=TrackerType.HTTP)
    # формат ответа задается в каждом запросе проверки
    announcer = HTTPAnnouncer(client, announce_url)
    session = ProbeSession(announcer, result, rng=rng, numwant=settings.numwant)
    await session.run(COMPACT_PROBES)

    battery = COMMON_PROBES + HTTP_VALIDATION_PROBES
    if not result.supports_compact and not result.supports_non_compact:
        logger.info(f"Трекер {announce_url} не поддерживает ни компактные, ни некомпактные ответы")
        session.skip_all(battery, "трекер не поддерживает ни компактные, ни некомпактные ответы")
        return result.freeze()

    announcer.override_compact(bool(result.supports_compact))
    await session.run(battery)
    return result.freeze()
