import os

from pydantic import BaseModel, Field
import ujson


class ScopedConfig(BaseModel):
    protocol_version: int = Field(default=760, ge=0)
    """握手时声明的协议版本，同时也是接受结果所要求的版本"""
    player_cap: int = Field(default=50, ge=0)
    """接受结果所要求的 players.max"""
    connect_timeout: float = Field(default=5.0, gt=0)
    """建立连接的超时时间（秒）"""
    idle_timeout: float = Field(default=0.5, gt=0)
    """单次读取的空闲超时（秒），超时即视为响应结束"""
    read_deadline: float = Field(default=10.0, gt=0)
    """整个读取循环的最长时间（秒）"""
    chunk_size: int = Field(default=0xFF, gt=0)
    """单次读取的最大字节数"""
    buffer_limit: int = Field(default=0x100000, gt=0)
    """响应缓冲区上限（字节）"""
    concurrency: int = Field(default=256, gt=0)
    """同时进行的探测数量"""
    output_dir: str = Field(default="data")
    """结果文件的保存目录"""
    resolve_srv: bool = Field(default=True)
    """解析域名时是否查询 SRV 记录"""
    log_level: str = Field(default="INFO")
    """日志等级"""


class Config(BaseModel):
    mcscan: ScopedConfig = Field(default_factory=ScopedConfig)
    """MCScan Config"""


def load_config(file: str | None = None) -> ScopedConfig:
    """
    读取配置文件，未指定文件时使用默认配置。

    :params file: JSON 配置文件路径，格式为 ``{"mcscan": {...}}``

    :returns: 扫描配置
    """
    if file is None:
        return ScopedConfig()
    if not os.path.isfile(file):
        raise ValueError(f"Config file not found: {file}")

    try:
        with open(file, encoding="utf-8") as f:
            data = ujson.loads((f.read()).strip() or "{}")
    except OSError as e:
        raise ValueError(f"Unable to read config file {file}: {e}") from e
    return Config.model_validate(data).mcscan
