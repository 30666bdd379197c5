"""Turning model responses into executed tool calls."""

from .cancellation import CancellationToken, OperationCancelledError, is_cancelled
from .response_normalizer import normalize_response
from .tool_call_parser import (
    detect_malformed_notation,
    normalize_tool_marker_text,
    parse_embedded_tool_calls,
    strip_think_tags,
    try_parse_json_block,
)
from .tool_executor import (
    ConversationStateSink,
    ExecutorConfig,
    ParallelToolExecutor,
    ResultDisplaySink,
    ToolExecutionError,
    execute_tools_directly,
    format_tool_result_content,
    parse_tool_arguments,
)
from .tool_filter import UNKNOWN_TOOL_MESSAGE, filter_valid_tool_calls
from .tool_processor import (
    ToolCallCallbacks,
    extract_tool_calls,
    malformed_sentinel,
    process_xml_tool_calls,
)
from .types import (
    MALFORMED_CALL_ID,
    MALFORMED_CALL_NAME,
    ExtractionResult,
    FilterResult,
    Message,
    NormalizedResponse,
    ToolCall,
    ToolFunction,
    ToolResult,
)

__all__ = [
    # Types
    "Message",
    "ToolFunction",
    "ToolCall",
    "ToolResult",
    "NormalizedResponse",
    "ExtractionResult",
    "FilterResult",
    "MALFORMED_CALL_ID",
    "MALFORMED_CALL_NAME",
    # Cancellation
    "CancellationToken",
    "OperationCancelledError",
    "is_cancelled",
    # Normalizer
    "normalize_response",
    # Extraction
    "ToolCallCallbacks",
    "extract_tool_calls",
    "process_xml_tool_calls",
    "malformed_sentinel",
    "detect_malformed_notation",
    "normalize_tool_marker_text",
    "parse_embedded_tool_calls",
    "strip_think_tags",
    "try_parse_json_block",
    # Filter
    "filter_valid_tool_calls",
    "UNKNOWN_TOOL_MESSAGE",
    # Executor
    "ConversationStateSink",
    "ResultDisplaySink",
    "ExecutorConfig",
    "ParallelToolExecutor",
    "ToolExecutionError",
    "execute_tools_directly",
    "format_tool_result_content",
    "parse_tool_arguments",
]
