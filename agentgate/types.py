from dataclasses import dataclass, field


@dataclass
class UserIdentity:
    user_id: str
    token: str = ""


@dataclass
class ToolResult:
    call_id: str
    content: str
    success: bool = True
    name: str = ""
    error_code: str | None = None
    usage: list[dict] | None = None
    metadata: dict = field(default_factory=dict)


class ErrorCode:
    TIMEOUT = "timeout"
    TOOL_EXCEPTION = "tool_exception"
    UNKNOWN_TOOL = "unknown_tool"
    NOT_AUTHORIZED = "not_authorized"
    REMOTE_ERROR = "remote_error"
    HTTP_ERROR = "http_error"
    UPSTREAM_ERROR = "upstream_error"
    REMOTE_TOOL_SERVER = "remote_tool_server"
    RECURSION_LIMIT = "recursion_limit"
    THREAD_NOT_FOUND = "thread_not_found"
    INTERNAL_ERROR = "internal_error"


class GatewayError(Exception):
    code = ErrorCode.INTERNAL_ERROR


class ConfigurationError(GatewayError):
    """Missing credentials, unknown brand or protocol family."""


class UpstreamError(GatewayError):
    code = ErrorCode.UPSTREAM_ERROR

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RemoteToolServerError(UpstreamError):
    """The upstream refused the request because an attached tool server failed."""

    code = ErrorCode.REMOTE_TOOL_SERVER


class RecursionLimitError(GatewayError):
    code = ErrorCode.RECURSION_LIMIT


class ToolNotFoundError(GatewayError):
    code = ErrorCode.NOT_AUTHORIZED


class ThreadNotFoundError(GatewayError):
    code = ErrorCode.THREAD_NOT_FOUND
