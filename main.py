import argparse
import asyncio
import json
import sys
from typing import TextIO

from tracker_probe.config import settings
from tracker_probe.exceptions import TrackerProbeError
from tracker_probe.log_conf import logging, set_debug
from tracker_probe.schemas import TrackerReport, TrackerType
from tracker_probe.session import probe_http_tracker, probe_udp_tracker

logger = logging.getLogger(__name__)


def yes_no(value: bool | None) -> str:
    return "да" if value else "нет"


def create_final_message(report: TrackerReport, stream: TextIO) -> None:
    if report.type == TrackerType.HTTP:
        stream.write(f"Трекер поддерживает компактные HTTP announce: {yes_no(report.supports_compact)}\n")
        stream.write(f"Трекер поддерживает некомпактные HTTP announce: {yes_no(report.supports_non_compact)}\n")
    stream.write(f"Трекер поддерживает подмену IP: {yes_no(report.supports_ip_spoofing)}\n")
    stream.write(f"Трекер не возвращает запрашивающего пира: "
                 f"{yes_no(report.supports_announcing_peer_not_in_peer_list)}\n")
    stream.write(f"Трекер не возвращает сидам других сидов: {yes_no(report.supports_optimized_seeder_response)}\n")

    stream.write("\nВыполненные проверки:\n")
    for test in report.tests:
        if not test.run:
            continue
        stream.write(f"\nПроверка: {test.name} - {test.status.value}\n")
        if test.result is not None:
            stream.write(f"Результат: {test.result}\n")
        if test.error is not None:
            stream.write(f"Ошибка: {test.error}\n")

    skipped = [test for test in report.tests if not test.run]
    if skipped:
        stream.write("\nНе выполненные проверки:\n")
        for test in skipped:
            stream.write(f"{test.name}\t- {test.not_run_reason}\n")


def positive_float(value: str) -> float:
    """ Функция для проверки таймаута """
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Таймаут '{value}' не является числом") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"Таймаут должен быть больше нуля, передано {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Скрипт для проверки возможностей и корректности BitTorrent трекера")

    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument('-a', '--announce', help="announce URL HTTP трекера, например http://tracker.org:6881/announce")
    target.add_argument('-u', '--udp', help="адрес UDP трекера: host:port или udp://host:port/announce")
    parser.add_argument('--debug', action='store_true', help="подробное логирование запросов и ответов")
    parser.add_argument('--timeout', type=positive_float, help="таймаут одного запроса в секундах")
    parser.add_argument('--json', action='store_true', help="вывести результат в JSON")
    parser.add_argument('--output', help="файл для результата вместо stdout")
    return parser


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    set_debug(args.debug)
    run_settings = settings.override(udp_timeout_sec=args.timeout, http_timeout_sec=args.timeout)

    try:
        if args.udp:
            report = await probe_udp_tracker(args.udp, settings=run_settings)
        else:
            report = await probe_http_tracker(args.announce, settings=run_settings)
    except TrackerProbeError as exception:
        logger.error(f"Не удалось проверить трекер: {exception.__class__.__name__}: {exception}")
        return 1

    stream = open(args.output, 'w', encoding='utf-8') if args.output else sys.stdout
    try:
        if args.json:
            json.dump(report.to_dict(), stream, ensure_ascii=False, indent=2)
            stream.write("\n")
        else:
            create_final_message(report, stream)
    finally:
        if stream is not sys.stdout:
            stream.close()
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    logger.info("Старт скрипта")
    run()
