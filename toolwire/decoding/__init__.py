"""Streaming decoder: tool-call accumulation and vendor parsers."""

from .accumulator import AccumulatorSnapshot, AccumulatorState, StreamingToolCallAccumulator
from .native import NativeToolCallAccumulator
from .parsers import QwenParser, ResponseParser, clean_response_text, get_parser

__all__ = [
    "AccumulatorSnapshot",
    "AccumulatorState",
    "StreamingToolCallAccumulator",
    "NativeToolCallAccumulator",
    "ResponseParser",
    "QwenParser",
    "get_parser",
    "clean_response_text",
]
