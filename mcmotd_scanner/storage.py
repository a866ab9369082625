import base64
import binascii
import os
import re

from pydantic import ValidationError
import ujson

from .exceptions import PayloadDecodeError, PersistError
from .models import Endpoint, StatusPayload

FAVICON_PREFIX = "data:image/png;base64,"
"""图标 data URI 的固定前缀"""


def parse_status(payload_raw: bytes | bytearray) -> StatusPayload:
    """
    Parse the JSON status payload.

    :param payload_raw: The raw SLP payload, without header and string length
    """
    try:
        payload_obj = ujson.loads(bytes(payload_raw).decode("utf8"))
        payload = StatusPayload.model_validate(payload_obj)
        # lone surrogate escapes decode fine but cannot be written back as UTF-8
        dump_status(payload)
    except (UnicodeError, ujson.JSONDecodeError, ValidationError) as e:
        raise PayloadDecodeError(str(e).splitlines()[0] if str(e) else repr(e)) from e
    return payload


def dump_status(payload: StatusPayload) -> bytes:
    """Pretty printed UTF-8 JSON of the status"""
    return ujson.dumps(
        payload.model_dump(),
        indent=2,
        ensure_ascii=False,
        escape_forward_slashes=False,
    ).encode("utf-8")


def check_acceptance(
    payload: StatusPayload, protocol_version: int, player_cap: int
) -> str | None:
    """
    判断状态是否满足保存条件。

    :params payload: 服务器状态
    :params protocol_version: 要求的协议版本
    :params player_cap: 要求的最大玩家数

    :returns: 满足时返回 None，否则返回第一个不满足的条件名
    """
    if payload.players.max != player_cap:
        return "max_players"
    if not payload.favicon:
        return "favicon"
    if payload.version.protocol != protocol_version:
        return "protocol"
    return None


def artifact_stem(endpoint: Endpoint) -> str:
    """由地址与端口生成文件名（不含扩展名）"""
    return re.sub(r"[^A-Za-z0-9.\-]", "_", f"{endpoint.host}_{endpoint.port}")


def decode_favicon(favicon: str) -> bytes:
    return base64.b64decode(favicon[len(FAVICON_PREFIX) :], validate=True)


def save_artifacts(
    payload: StatusPayload, endpoint: Endpoint, output_dir: str
) -> list[str]:
    """
    保存状态 JSON 与服务器图标。

    JSON 先写入，图标写入失败时不会删除已写入的 JSON。

    :params payload: 已通过筛选的服务器状态
    :params endpoint: 服务器地址
    :params output_dir: 保存目录

    :returns: 写入的文件路径
    """
    stem = os.path.join(output_dir, artifact_stem(endpoint))
    written = []

    try:
        content = dump_status(payload)
    except ValueError as e:
        raise PersistError(f"status is not serializable: {e}") from e

    try:
        with open(f"{stem}.json", "wb") as f:
            f.write(content)
        written.append(f"{stem}.json")

        if payload.favicon:
            try:
                image = decode_favicon(payload.favicon)
            except (binascii.Error, ValueError) as e:
                raise PersistError(f"favicon is not valid base64: {e}") from e
            with open(f"{stem}.png", "wb") as f:
                f.write(image)
            written.append(f"{stem}.png")
    except OSError as e:
        raise PersistError(f"{e.__class__.__name__}: {e}") from e

    return written
