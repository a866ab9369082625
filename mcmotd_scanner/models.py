from typing import NamedTuple

from pydantic import BaseModel, Field, StrictInt, StrictStr

DEFAULT_PORT = 25565
"""Java 版服务器的默认 TCP 端口"""


class Endpoint(NamedTuple):
    host: str
    """连接使用的地址"""
    port: int = DEFAULT_PORT
    """连接使用的端口"""
    refer: str | None = None
    """握手包中写入的地址，为空时使用 host"""

    @property
    def handshake_host(self) -> str:
        return self.refer or self.host

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


class Description(BaseModel):
    text: StrictStr


class Player(BaseModel):
    name: StrictStr
    id: StrictStr


class Players(BaseModel):
    max: StrictInt = Field(ge=0)
    online: StrictInt = Field(ge=0)
    sample: list[Player] | None = None


class Version(BaseModel):
    name: StrictStr
    protocol: StrictInt = Field(ge=0)


class StatusPayload(BaseModel):
    """Status response JSON, unknown keys are ignored"""

    description: Description
    players: Players
    version: Version
    favicon: StrictStr | None = None
    """``data:image/png;base64,`` 开头的服务器图标"""


class TargetPort(BaseModel):
    port: int = Field(ge=0, le=65535)
    proto: str = "tcp"
    status: str = "open"
    reason: str = ""
    ttl: int = 0


class TargetEntry(BaseModel):
    """masscan ``-oJ`` 输出中的一条记录"""

    ip: str
    timestamp: str = ""
    ports: list[TargetPort] = Field(default_factory=list)
