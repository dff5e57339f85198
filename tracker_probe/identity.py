import random
from ipaddress import IPv4Address

from tracker_probe.schemas import INFO_HASH_LENGTH, Peer

PEER_ID_PREFIX = b"-TP0100-"
MIN_PORT = 1024
MAX_PORT = 65535

_random = random.Random()


def new_info_hash(rng: random.Random | None = None) -> bytes:
    rng = rng or _random
    return bytes(rng.getrandbits(8) for _ in range(INFO_HASH_LENGTH))


def new_peer_id(rng: random.Random | None = None) -> bytes:
    """ peer_id в стиле Azureus: -TP0100- и 12 цифр """
    rng = rng or _random
    return PEER_ID_PREFIX + ''.join([str(rng.randint(0, 9)) for _ in range(12)]).encode()


def new_ip(rng: random.Random | None = None) -> IPv4Address:
    rng = rng or _random
    # первый октет из 1..223 без 10 и 127: не частная сеть, не loopback, не multicast
    first = rng.choice([octet for octet in range(1, 224) if octet not in (10, 127)])
    return IPv4Address(bytes([first, rng.randint(0, 255), rng.randint(0, 255), rng.randint(1, 254)]))


def new_peer(rng: random.Random | None = None) -> Peer:
    rng = rng or _random
    return Peer(id=new_peer_id(rng), ip=new_ip(rng), port=rng.randint(MIN_PORT, MAX_PORT))


def new_peers(count: int, rng: random.Random | None = None) -> list[Peer]:
    """ Несколько пиров с попарно различными портами и peer id """
    rng = rng or _random
    peers: list[Peer] = []
    while len(peers) < count:
        peer = new_peer(rng)
        if any(peer.port == known.port or peer.id == known.id for known in peers):
            continue
        peers.append(peer)
    return peers
