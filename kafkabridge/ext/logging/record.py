from types import TracebackType
from typing import List
from typing import Optional
from typing import Tuple
from typing import Union

import logging
import pydantic

ExcInfo = Union[
    Tuple[type, BaseException, Optional[TracebackType]], Tuple[None, None, None], None
]


class LogModel(pydantic.BaseModel):
    """
    Structured payload for a log call. Pass instances as log arguments and
    they are lifted out of the message args into `record.log_models`.
    """


class ModelLogRecord(logging.LogRecord):
    def __init__(
        self,
        name: str,
        level: int,
        fn: str,
        lno: int,
        msg: str,
        args: Tuple,
        exc_info: ExcInfo,
        func: Optional[str] = None,
        sinfo: Optional[str] = None,
        log_models: Optional[List[LogModel]] = None,
    ):
        super().__init__(name, level, fn, lno, msg, args, exc_info, func, sinfo)

        self.log_models = log_models or []
        self.exc_type: Optional[str] = None
        self.stack_text: Optional[str] = None


def factory(
    name: str,
    level: int,
    fn: str,
    lno: int,
    msg: str,
    args: Tuple,
    exc_info: ExcInfo,
    func: Optional[str] = None,
    sinfo: Optional[str] = None,
) -> ModelLogRecord:
    log_models = [arg for arg in args if isinstance(arg, LogModel)]
    if log_models:
        args = tuple(arg for arg in args if not isinstance(arg, LogModel))

    return ModelLogRecord(name, level, fn, lno, msg, args, exc_info, func, sinfo, log_models)


def install() -> None:
    if logging.getLogRecordFactory() is not factory:
        logging.setLogRecordFactory(factory)


install()
