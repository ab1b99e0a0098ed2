"""AgentLink 异常体系

网关连接层的失败只影响链路状态，永远不向编排核心传播。
"""


class AgentLinkError(Exception):
    """AgentLink 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重连恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class UpstreamUnavailableError(AgentLinkError):
    """运行时网关不可达（连接失败、超时、连接被关闭等）

    此异常触发退避重连，链路状态置为 disconnected。
    """

    def __init__(self, url: str, original_error: Exception) -> None:
        """
        Args:
            url: 尝试连接的网关地址
            original_error: 原始异常
        """
        super().__init__(
            f"运行时网关不可达: {url} -- {original_error}",
            recoverable=True,
        )
        self.url = url
        self.original_error = original_error


class MalformedFrameError(AgentLinkError):
    """无法解析的网关帧

    仅丢弃该帧，不影响连接。
    """

    def __init__(self, raw: str | bytes, reason: str) -> None:
        preview = raw[:80] if isinstance(raw, str) else raw[:80].decode("utf-8", "replace")
        super().__init__(f"无法解析的网关帧: {reason} -- {preview}", recoverable=True)
        self.reason = reason


class HandshakeRejectedError(AgentLinkError):
    """网关拒绝 connect 握手（token 无效、协议版本不匹配等）"""

    def __init__(self, error: object) -> None:
        super().__init__(f"网关拒绝握手: {error}", recoverable=True)
        self.error = error
