from .decorators import LoggingConsumer
from .decorators import LoggingProducer
from .formatter import JsonFormatter
from .record import LogModel

__all__ = ("JsonFormatter", "LogModel", "LoggingConsumer", "LoggingProducer")
