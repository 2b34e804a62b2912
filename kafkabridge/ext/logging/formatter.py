from .record import install
from .record import ModelLogRecord
from typing import Any
from typing import Dict
from typing import Optional
from typing import Tuple

import logging
import orjson
import pydantic
import time


class BaseLogFormat(pydantic.BaseModel):
    timestamp: str = pydantic.Field(alias="asctime")
    logger: str = pydantic.Field(alias="name")
    severity: str = pydantic.Field(alias="levelname")
    level: int = pydantic.Field(alias="levelno")
    message: str
    exception: Optional[str] = pydantic.Field(default=None, alias="exc_type")
    trace: Optional[str] = pydantic.Field(default=None, alias="exc_text")
    stack: Optional[str] = pydantic.Field(default=None, alias="stack_text")


class JsonFormatter(logging.Formatter):
    """
    Render records as one json document per line: the base fields plus the
    fields of every `LogModel` passed as log argument.
    """

    converter = time.gmtime

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        style: str = "%",
    ):
        install()
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)  # type: ignore

    def formatExceptionName(self, exception: Tuple) -> str:
        return exception[0].__name__

    def _format_base_log(self, record: ModelLogRecord) -> Dict[str, Any]:
        return BaseLogFormat.model_validate(record.__dict__).model_dump(exclude_none=True)

    def _format_extra_logs(self, record: ModelLogRecord) -> Dict[str, Any]:
        extra_logs: Dict[str, Any] = {}
        for log in getattr(record, "log_models", []):
            extra_logs.update(log.model_dump(mode="json", exclude_none=True))
        return extra_logs

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        record.asctime = self.formatTime(record, self.datefmt)

        if record.exc_info:
            # Cache the traceback text to avoid converting it multiple times
            if not record.exc_text:
                record.exc_text = self.formatException(record.exc_info)
            record.exc_type = self.formatExceptionName(record.exc_info)  # type: ignore

        if record.stack_info:
            record.stack_text = self.formatStack(record.stack_info)  # type: ignore

        data = self._format_extra_logs(record)  # type: ignore
        data.update(self._format_base_log(record))  # type: ignore
        return orjson.dumps(data, default=str).decode("utf-8")
