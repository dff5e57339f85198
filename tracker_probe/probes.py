"""
Проверки поведения трекера.

Каждая проверка - короткий сценарий announce-запросов в новый рой со случайным info_hash.
Проверка возможностей возвращает bool, проверка корректности возвращает None,
негативная проверка возвращает True, если трекер отверг запрос.
Несоответствие протоколу поднимается как ConformanceError, сбой обмена - как TransportError.
"""
import random
from typing import Iterable

from tracker_probe.announcer import Announcer
from tracker_probe.exceptions import ConformanceError, TrackerRejectedError, UnexpectedTrackerResponse
from tracker_probe.identity import new_info_hash, new_peer, new_peers
from tracker_probe.log_conf import logging
from tracker_probe.schemas import (
    AnnounceRequest,
    AnnounceResponse,
    AnnounceResult,
    ErrorResponse,
    Event,
    Peer,
    TrackerResult,
    WarningResponse,
)

logger = logging.getLogger(__name__)

LEECHER_LEFT = 100


def expect_announce(response: AnnounceResult, step: str) -> AnnounceResponse:
    """ Ошибка и предупреждение трекера в позитивной проверке - провал проверки с текстом трекера """
    if isinstance(response, ErrorResponse):
        logger.warning(f"{step}: трекер вернул ошибку: {response.message}")
        raise UnexpectedTrackerResponse("ошибку", response.message)
    if isinstance(response, WarningResponse):
        logger.warning(f"{step}: трекер вернул предупреждение: {response.message}")
        raise UnexpectedTrackerResponse("предупреждение", response.message)
    return response


async def announce(announcer: Announcer, request: AnnounceRequest, step: str) -> AnnounceResponse:
    response = expect_announce(await announcer.announce(request), step)
    if request.numwant > 0 and len(response.peers) > request.numwant:
        raise ConformanceError(f"{step}: трекер вернул пиров {len(response.peers)} при numwant={request.numwant}")
    return response


def find_peer(peers: Iterable[Peer], wanted: Peer, compare_ip: bool = False) -> Peer | None:
    for peer in peers:
        if peer.matches(wanted, compare_ip=compare_ip):
            return peer
    return None


def check_peer_set(
        response: AnnounceResponse,
        expected: list[Peer],
        step: str,
        compare_ip: bool
) -> None:
    """ Набор пиров в ответе должен совпадать с ожидаемым: порядок не важен, состав точный """
    if len(response.peers) != len(expected):
        raise ConformanceError(f"{step}: ожидалось пиров {len(expected)}, получено {len(response.peers)}")
    remaining = list(expected)
    for peer in response.peers:
        known = find_peer(remaining, peer, compare_ip=compare_ip)
        if known is None:
            raise ConformanceError(f"{step}: трекер вернул неизвестного пира {peer}")
        remaining.remove(known)


def leecher_request(peer: Peer, info_hash: bytes, numwant: int, left: int = LEECHER_LEFT) -> AnnounceRequest:
    return AnnounceRequest(
        info_hash=info_hash,
        peer=peer,
        event=Event.STARTED,
        numwant=numwant,
        left=left,
    )


async def supports_layout(announcer: Announcer, compact: bool, rng: random.Random, numwant: int) -> bool:
    """ Второй лишер должен получить запись о первом в запрошенном формате """
    leecher1, leecher2 = new_peers(2, rng)
    request = leecher_request(leecher1, new_info_hash(rng), numwant).replace(compact=compact)
    await announce(announcer, request, "первый лишер")

    response = await announce(announcer, request.replace(peer=leecher2), "второй лишер")
    if len(response.peers) == 0:
        raise ConformanceError("announce не вернул другого известного лишера")
    if len(response.peers) > 2:
        raise ConformanceError("announce вернул слишком много пиров")
    if find_peer(response.peers, leecher1) is None:
        raise ConformanceError("announce вернул неизвестного пира")
    if not compact:
        for peer in response.peers:
            if not peer.id:
                raise ConformanceError(f"в некомпактном ответе у пира {peer} нет peer id")
    return True


async def supports_compact(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> bool:
    return await supports_layout(announcer, True, rng, numwant)


async def supports_non_compact(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> bool:
    return await supports_layout(announcer, False, rng, numwant)


async def supports_announcing_peer_not_in_peer_list(
        announcer: Announcer,
        result: TrackerResult,
        rng: random.Random,
        numwant: int
) -> bool:
    """
    Исключает ли трекер самого запрашивающего пира из списка.

    Пир анонсируется лишером, затем повторяет announce без события. Пустой список - пир исключен,
    ровно сам пир - не исключен, что-то другое - нарушение.
    Адрес не сравниваем: поддержка подмены IP еще не известна.
    """
    peer = new_peer(rng)
    request = leecher_request(peer, new_info_hash(rng), numwant)

    response = await announce(announcer, request, "первый announce")
    if len(response.peers) > 1:
        raise ConformanceError(f"первый announce в новый рой вернул {len(response.peers)} пиров")
    if len(response.peers) == 1:
        if response.peers[0].matches(peer, compare_ip=False):
            return False
        raise ConformanceError(f"первый announce в новый рой вернул неизвестного пира {response.peers[0]}")

    response = await announce(announcer, request.replace(left=50, event=Event.NONE), "повторный announce")
    if len(response.peers) == 0:
        return True
    if len(response.peers) == 1:
        if response.peers[0].matches(peer, compare_ip=False):
            return False
        raise ConformanceError("повторный announce того же пира вернул неизвестного пира")
    raise ConformanceError("повторный announce того же пира вернул больше одного пира")


async def supports_ip_spoofing(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> bool:
    """
    Два лишера с одного адреса объявляют разные IP.

    Если трекер исключает запрашивающего, второй должен получить ровно первого с его объявленным IP,
    иначе - обоих, и хотя бы один объявленный IP должен совпасть.
    """
    leecher1, leecher2 = new_peers(2, rng)
    request = leecher_request(leecher1, new_info_hash(rng), numwant)
    await announce(announcer, request, "первый лишер")

    response = await announce(announcer, request.replace(peer=leecher2, left=120), "второй лишер")
    if result.supports_announcing_peer_not_in_peer_list:
        if len(response.peers) != 1 or find_peer(response.peers, leecher1) is None:
            raise ConformanceError("announce второго пира не вернул известного пира")
        return response.peers[0].ip == leecher1.ip

    declared = [leecher1, leecher2]
    if len(response.peers) != 2:
        raise ConformanceError(f"announce второго пира вернул {len(response.peers)} пиров, ожидалось 2")
    matched = []
    for peer in response.peers:
        known = find_peer(declared, peer)
        if known is None:
            raise ConformanceError(f"announce второго пира вернул неизвестного пира {peer}")
        matched.append((peer, known))
    return any(peer.ip == known.ip for peer, known in matched)


async def supports_optimized_seeder_response(
        announcer: Announcer,
        result: TrackerResult,
        rng: random.Random,
        numwant: int
) -> bool:
    """ Лишер и два сида: второму сиду нужен только лишер, другой сид ему бесполезен """
    leecher, seeder1, seeder2 = new_peers(3, rng)
    request = leecher_request(leecher, new_info_hash(rng), numwant)
    await announce(announcer, request, "лишер")
    await announce(announcer, request.replace(peer=seeder1, left=0), "первый сид")

    response = await announce(announcer, request.replace(peer=seeder2, left=0), "второй сид")
    for peer in response.peers:
        if find_peer([leecher, seeder1, seeder2], peer) is None:
            raise ConformanceError(f"announce сида вернул неизвестного пира {peer}")
    if find_peer(response.peers, leecher) is None:
        raise ConformanceError("announce сида не вернул ожидаемого лишера")
    return find_peer(response.peers, seeder1) is None


async def basic_announce(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> None:
    peer = new_peer(rng)
    request = leecher_request(peer, new_info_hash(rng), numwant)
    response = await announce(announcer, request, "первый announce")

    if response.complete != 0 or response.incomplete != 1:
        raise ConformanceError("в первом announce не ноль сидов и один лишер (только что анонсировавшийся), "
                               f"получено complete={response.complete} incomplete={response.incomplete}")
    expected = [] if result.supports_announcing_peer_not_in_peer_list else [peer]
    check_peer_set(response, expected, "первый announce", compare_ip=False)


async def basic_seeder_announce(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> None:
    peer = new_peer(rng)
    request = leecher_request(peer, new_info_hash(rng), numwant, left=0)
    response = await announce(announcer, request, "первый announce сида")

    if response.complete != 1 or response.incomplete != 0:
        raise ConformanceError("в первом announce не один сид (только что анонсировавшийся) и ноль лишеров, "
                               f"получено complete={response.complete} incomplete={response.incomplete}")
    expected = [] if result.supports_announcing_peer_not_in_peer_list else [peer]
    check_peer_set(response, expected, "первый announce сида", compare_ip=False)


async def check_returned_peers(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> None:
    """
    Полный сценарий: лишер L1, лишер L2, сид S1, сид S2, повторный announce L1.

    На каждом шаге состав списка пиров проверяется точно. Сам запрашивающий ожидается в списке,
    если трекер его не исключает; IP сравнивается, только если трекер принимает объявленный IP.
    Сиду S2 другой сид не положен, если трекер оптимизирует ответы сидам.
    """
    leecher1, leecher2, seeder1, seeder2 = new_peers(4, rng)
    compare_ip = result.supports_ip_spoofing
    excludes_self = result.supports_announcing_peer_not_in_peer_list
    optimizes_seeders = result.supports_optimized_seeder_response

    def expected(requester: Peer, others: list[Peer]) -> list[Peer]:
        return others if excludes_self else others + [requester]

    request = leecher_request(leecher1, new_info_hash(rng), numwant)
    step = "лишер L1"
    response = await announce(announcer, request, step)
    check_peer_set(response, expected(leecher1, []), step, compare_ip)

    step = "лишер L2"
    response = await announce(announcer, request.replace(peer=leecher2, left=120), step)
    check_peer_set(response, expected(leecher2, [leecher1]), step, compare_ip)

    step = "сид S1"
    response = await announce(announcer, request.replace(peer=seeder1, left=0), step)
    check_peer_set(response, expected(seeder1, [leecher1, leecher2]), step, compare_ip)

    step = "сид S2"
    response = await announce(announcer, request.replace(peer=seeder2, left=0), step)
    others = [leecher1, leecher2] if optimizes_seeders else [leecher1, leecher2, seeder1]
    check_peer_set(response, expected(seeder2, others), step, compare_ip)

    step = "повторный announce L1"
    response = await announce(announcer, request.replace(left=80, event=Event.NONE), step)
    check_peer_set(response, expected(leecher1, [leecher2, seeder1, seeder2]), step, compare_ip)


async def expect_rejection(announcer: Announcer, request: AnnounceRequest) -> bool:
    """ Трекер должен ответить ошибкой (или отказом на уровне HTTP) """
    try:
        response = await announcer.announce(request)
    except TrackerRejectedError as exception:
        logger.info(f"Трекер отверг запрос статусом {exception.status_code}")
        return True
    return isinstance(response, ErrorResponse)


def _valid_request(rng: random.Random, numwant: int) -> AnnounceRequest:
    return leecher_request(new_peer(rng), new_info_hash(rng), numwant).replace(compact=True)


async def invalid_short_infohash(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> bool:
    return await expect_rejection(announcer, _valid_request(rng, numwant).replace(info_hash=bytes([30] * 3)))


async def invalid_long_infohash(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> bool:
    return await expect_rejection(announcer, _valid_request(rng, numwant).replace(info_hash=bytes([30] * 21)))


async def invalid_short_peer_id(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> bool:
    request = _valid_request(rng, numwant)
    peer = request.peer
    short = Peer(id=peer.id[:19], ip=peer.ip, port=peer.port)
    return await expect_rejection(announcer, request.replace(peer=short))


async def invalid_long_peer_id(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> bool:
    request = _valid_request(rng, numwant)
    peer = request.peer
    too_long = Peer(id=peer.id + b"9", ip=peer.ip, port=peer.port)
    return await expect_rejection(announcer, request.replace(peer=too_long))


async def invalid_negative_uploaded(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> bool:
    return await expect_rejection(announcer, _valid_request(rng, numwant).replace(uploaded=-1))


async def invalid_negative_downloaded(
        announcer: Announcer,
        result: TrackerResult,
        rng: random.Random,
        numwant: int
) -> bool:
    return await expect_rejection(announcer, _valid_request(rng, numwant).replace(downloaded=-1))


async def invalid_negative_left(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> bool:
    return await expect_rejection(announcer, _valid_request(rng, numwant).replace(left=-1))


async def invalid_event(announcer: Announcer, result: TrackerResult, rng: random.Random, numwant: int) -> bool:
    return await expect_rejection(announcer, _valid_request(rng, numwant).replace(event=Event.INVALID))
