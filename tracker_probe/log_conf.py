import logging
from datetime import datetime

from pytz import timezone

from tracker_probe.config import settings

timezone = timezone(settings.timezone)


logging.Formatter.converter = lambda *args: datetime.now(timezone).timetuple()
log_level = logging.getLevelName(settings.log_level)
if not isinstance(log_level, int):
    log_level = logging.INFO
log_format = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
logging.basicConfig(level=log_level, format=log_format)


def set_debug(enabled: bool) -> None:
    """ Переключение подробного логирования (флаг --debug) """
    logging.getLogger().setLevel(logging.DEBUG if enabled else log_level)
