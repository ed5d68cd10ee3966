from __future__ import annotations

import logging

# attributes every LogRecord carries; anything else arrived through `extra=`
_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime", "taskName"}


class KeyValueFormatter(logging.Formatter):
    """Plain text lines with the record's `extra=` fields appended as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extras = {key: value for key, value in record.__dict__.items() if key not in _RESERVED}
        if not extras:
            return message
        fields = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        head, sep, tail = message.partition("\n")
        return f"{head} {fields}{sep}{tail}"
