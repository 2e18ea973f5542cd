import logging

# Attributes every LogRecord carries; anything else arrived through `extra`.
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "extra_fields"}

# Loggers that would log every status poll at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore")


def _render(value: object) -> str:
    text = str(value)
    if not text or any(char.isspace() for char in text):
        return repr(text)
    return text


class ExtraFieldsFormatter(logging.Formatter):
    """Appends checkout context passed through `extra` as sorted `key=value` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        record.extra_fields = ""
        if extras:
            record.extra_fields = " | " + " ".join(f"{key}={_render(extras[key])}" for key in sorted(extras))
        return super().format(record)


class CheckoutPollAccessFilter(logging.Filter):
    """Drops uvicorn access lines for successful view reads and health checks.

    Clients read the checkout view every couple of seconds while a payment
    is being confirmed, so these lines would drown everything else.
    """

    _QUIET_MARKERS = (
        '"GET /health',
        '"GET /checkout/',
    )

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if " 200" not in message:
            return True
        return not any(marker in message for marker in self._QUIET_MARKERS)


def setup_logging(level: str) -> None:
    formatter = ExtraFieldsFormatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s%(extra_fields)s")
    logging.basicConfig(level=level.upper(), force=True)
    for handler in logging.getLogger().handlers:
        handler.setFormatter(formatter)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    access_logger = logging.getLogger("uvicorn.access")
    if not any(isinstance(existing, CheckoutPollAccessFilter) for existing in access_logger.filters):
        access_logger.addFilter(CheckoutPollAccessFilter())
