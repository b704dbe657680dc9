from .sink import BatchSink, SqliteSink, SqliteSinkFactory, write_batch

__all__ = ["BatchSink", "SqliteSink", "SqliteSinkFactory", "write_batch"]
