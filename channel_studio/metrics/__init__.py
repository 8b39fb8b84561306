from .stream import MessageStatus, MetricUpdate, ChannelStats, MetricsAggregator

__all__ = ["MessageStatus", "MetricUpdate", "ChannelStats", "MetricsAggregator"]
