# alert_engine/sinks/__init__.py
from .base import AlertSink, BaseSink, SinkMetrics  # re-export
from .slack import SlackSink
from .x import XSink

__all__ = [
    "AlertSink",
    "BaseSink",
    "SinkMetrics",
    "SlackSink",
    "XSink",
]
