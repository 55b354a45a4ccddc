"""Request layer: retry policy, HTTP transport, tools, decoders and the pipeline."""

from llm_relay.llm.client_cache import ClientCache
from llm_relay.llm.pipeline import RequestPipeline
from llm_relay.llm.retry import is_retryable, retry_delay, with_retry
from llm_relay.llm.transport import HttpTransport

__all__ = [
    "ClientCache",
    "HttpTransport",
    "RequestPipeline",
    "is_retryable",
    "retry_delay",
    "with_retry",
]
