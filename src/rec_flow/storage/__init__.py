"""Durable queue/log storage and result export."""

from .base import JobStore, LogSink
from .queue_store import QueueStore
from .exporter import ResultExporter, SUPPORTED_FORMATS
