class TrackerProbeError(Exception):
    """ Базовое исключение проверки трекера """


class TransportError(TrackerProbeError):
    """ Сбой обмена с трекером: сеть, кодек, нарушение протокола """


class TrackerTimeoutError(TransportError):
    """ Трекер не ответил до истечения таймаута """


class TrackerConnectionError(TransportError):
    """ Ошибка сокета или HTTP-соединения """


class TrackerRejectedError(TransportError):
    """ HTTP-трекер ответил кодом, отличным от 2xx, и тело ответа не разобрать """

    def __init__(self, status_code: int, message: str | None = None):
        self.status_code = status_code
        super().__init__(message or f"Трекер вернул статус={status_code}")


class ProtocolViolationError(TransportError):
    """ Ответ трекера нарушает протокол """


class TransactionMismatchError(ProtocolViolationError):
    def __init__(self, expected: int, received: int, stage: str):
        self.expected = expected
        self.received = received
        super().__init__(f"{stage}: не совпал transaction_id в ответе {received} != {expected}")


class FramingError(ProtocolViolationError):
    """ Некорректная длина пакета или записи о пирах """


class DecodeError(TransportError):
    """ Ответ трекера не удалось разобрать """


class EncodeError(TransportError):
    """ Запрос нельзя представить в формате протокола """


class ConformanceError(TrackerProbeError):
    """ Ответ разобран, но противоречит ожидаемому состоянию роя """


class UnexpectedTrackerResponse(ConformanceError):
    """ Трекер вернул ошибку или предупреждение там, где ожидался обычный ответ """

    def __init__(self, kind: str, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"трекер вернул {kind}: {message}")


class InvalidTrackerAddressError(TrackerProbeError, ValueError):
    """ Передан неправильный адрес трекера """
