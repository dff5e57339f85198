from typing import Protocol, runtime_checkable

from tracker_probe.schemas import AnnounceRequest, AnnounceResult, ScrapeRequest, ScrapeResponse


@runtime_checkable
class Announcer(Protocol):
    """
    Клиент трекера, умеющий делать announce.

    Ошибка или предупреждение трекера возвращаются как ErrorResponse / WarningResponse,
    сбои транспорта и разбора поднимаются как TransportError.
    """

    async def announce(self, request: AnnounceRequest) -> AnnounceResult:
        ...


@runtime_checkable
class Scraper(Protocol):

    async def scrape(self, request: ScrapeRequest) -> ScrapeResponse:
        ...
