class ScanError(Exception):
    """扫描过程中所有可预期错误的基类"""


class TargetsError(ScanError):
    """目标列表无法读取或格式错误"""


class ConnectError(ScanError):
    """无法建立连接（拒绝连接、超时或域名解析失败）"""


class TransportError(ScanError):
    """连接建立后的传输错误"""


class WriteError(TransportError):
    """发送握手或状态请求时失败"""


class ReadError(TransportError):
    """读取响应时失败，已读取的数据将被丢弃"""


class ProtocolError(ScanError):
    """响应不符合协议，通常意味着对方不是 Minecraft 服务器"""


class MalformedVarint(ProtocolError):
    """VarInt 在 5 个字节内未结束，或数据在中途耗尽"""


class FrameUnderrun(ProtocolError):
    """响应在三个 VarInt 头部字段读完之前就结束了"""


class PayloadDecodeError(ProtocolError):
    """负载不是合法的 JSON，或不符合状态结构"""


class PersistError(ScanError):
    """写入结果文件失败"""
