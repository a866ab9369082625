# Parts of this file are derived from minestat.py
# Copyright (C) 2016-2023 Lloyd Dilley, Felix Ern (MindSolve)
# http://www.dilley.me/
#
# This program is free software; you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation; either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License along
# with this program; if not, write to the Free Software Foundation, Inc.,
# 51 Franklin Street, Fifth Floor, Boston, MA 02110-1301 USA.

import asyncio
import contextlib
from enum import Enum
import re
from time import perf_counter

from loguru import logger

from .config import ScopedConfig
from .exceptions import (
    ConnectError,
    FrameUnderrun,
    PayloadDecodeError,
    ReadError,
    ScanError,
    WriteError,
)
from .models import Endpoint, StatusPayload
from .protocol import build_handshake, build_status_request, frame_payload
from .storage import check_acceptance, parse_status, save_artifacts


class ProbeState(Enum):
    """
    探测的状态，只会向前推进

    - `CONNECTING`：正在建立 TCP 连接
    - `HANDSHAKING`：正在发送握手包和状态请求
    - `AWAITING_RESPONSE`：正在读取响应，直到对方关闭连接或空闲超时
    - `STRIPPING`：正在去除响应头部的三个 VarInt
    - `VALIDATING`：正在解析并筛选状态
    - `ACCEPTED`：状态满足条件，结果已保存
    - `REJECTED`：状态不满足条件，或对方不是 Minecraft 服务器
    - `FAILED`：连接、传输或保存失败
    """

    def __str__(self) -> str:
        return str(self.name)

    CONNECTING = 0
    HANDSHAKING = 1
    AWAITING_RESPONSE = 2
    STRIPPING = 3
    VALIDATING = 4
    ACCEPTED = 5
    REJECTED = -1
    FAILED = -2

    @property
    def terminal(self) -> bool:
        return self in (ProbeState.ACCEPTED, ProbeState.REJECTED, ProbeState.FAILED)


UNRECOGNIZED = "unrecognized"
"""响应无法解析时的拒绝原因"""


def motd_strip_formatting(raw_motd: str) -> str:
    """
    用于去除 MOTD 中旧版格式代码（`§` 加一个字符）的函数。

    :param raw_motd: 原始 MOTD 文本
    """
    return re.sub(r"§.", "", raw_motd)


class StatusProbe:
    def __init__(self, endpoint: Endpoint, config: ScopedConfig) -> None:
        """
        Single status probe of one endpoint.

        :param endpoint: Address to probe
        :param config: Timeouts, buffer sizes and acceptance criteria
        """
        self.endpoint: Endpoint = endpoint
        """探测的地址"""
        self.config: ScopedConfig = config
        self.state: ProbeState = ProbeState.CONNECTING
        """当前状态"""
        self.latency: int | None = None
        """建立连接所用时间（毫秒）"""
        self.response: bytearray = bytearray()
        """读取到的原始响应"""
        self.payload: StatusPayload | None = None
        """解析后的服务器状态"""
        self.rejection: str | None = None
        """被拒绝的原因：max_players、favicon、protocol 或 unrecognized"""
        self.error: ScanError | None = None
        """导致拒绝或失败的错误"""
        self.artifacts: list[str] = []
        """已写入的文件"""

    def __repr__(self) -> str:
        return f"<StatusProbe {self.endpoint} {self.state}>"

    async def run(self) -> ProbeState:
        """
        Connect, send handshake and status request, read until timeout or EOF,
        then strip, validate and persist.

        Expected errors end in a terminal state instead of being raised.
        """
        logger.debug(f"Scanning {self.endpoint}")
        try:
            await self._run()
        except (FrameUnderrun, PayloadDecodeError) as e:
            self.error = e
            self.rejection = UNRECOGNIZED
            self.state = ProbeState.REJECTED
            logger.debug(
                f"{self.endpoint} unrecognized response: {e.__class__.__name__}: {e}"
            )
        except ScanError as e:
            self.error = e
            self.state = ProbeState.FAILED
            logger.warning(f"{self.endpoint} failed: {e.__class__.__name__}: {e}")
        return self.state

    async def _run(self) -> None:
        reader, writer = await self.connect()
        try:
            self.state = ProbeState.HANDSHAKING
            await self.send_requests(writer)

            self.state = ProbeState.AWAITING_RESPONSE
            self.response = await self.read_response(reader)
        finally:
            await self.close(writer)

        self.state = ProbeState.STRIPPING
        payload_raw = frame_payload(self.response)

        self.state = ProbeState.VALIDATING
        self.payload = parse_status(payload_raw)
        self.rejection = check_acceptance(
            self.payload, self.config.protocol_version, self.config.player_cap
        )
        if self.rejection is not None:
            self.state = ProbeState.REJECTED
            logger.debug(f"{self.endpoint} rejected: {self.rejection}")
            return

        self.artifacts = await asyncio.to_thread(
            save_artifacts, self.payload, self.endpoint, self.config.output_dir
        )
        self.state = ProbeState.ACCEPTED
        logger.success(
            f"{self.endpoint} accepted: {self.payload.version.name} "
            f"{self.payload.players.online}/{self.payload.players.max} "
            f"{motd_strip_formatting(self.payload.description.text)!r}"
        )

    async def connect(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        start_time = perf_counter()
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.endpoint.host, self.endpoint.port),
                self.config.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectError(
                f"connection timed out after {self.config.connect_timeout}s"
            ) from e
        except OSError as e:
            raise ConnectError(f"{e.__class__.__name__}: {e}") from e
        self.latency = round((perf_counter() - start_time) * 1000)
        return reader, writer

    async def send_requests(self, writer: asyncio.StreamWriter) -> None:
        handshake = build_handshake(
            self.endpoint.handshake_host,
            self.endpoint.port,
            self.config.protocol_version,
        )
        try:
            for packet in (handshake, build_status_request()):
                writer.write(packet)
                await writer.drain()
        except OSError as e:
            raise WriteError(f"{e.__class__.__name__}: {e}") from e

    async def read_response(self, reader: asyncio.StreamReader) -> bytearray:
        """
        Read until the peer closes the connection or stays silent for
        ``idle_timeout`` seconds.

        The status response carries no end marker that can be trusted before
        the whole frame is in, so silence is treated as the end of the
        message. ``read_deadline`` and ``buffer_limit`` bound a peer that
        keeps trickling data.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.read_deadline
        response = bytearray()

        while len(response) < self.config.buffer_limit:
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.debug(f"{self.endpoint} read deadline reached")
                break
            try:
                chunk = await asyncio.wait_for(
                    reader.read(self.config.chunk_size),
                    min(self.config.idle_timeout, remaining),
                )
            except asyncio.TimeoutError:
                break
            except OSError as e:
                raise ReadError(f"{e.__class__.__name__}: {e}") from e

            if not chunk:
                break
            response += chunk

        return response

    @staticmethod
    async def close(writer: asyncio.StreamWriter) -> None:
        # shutdown so we dont have to wait for the server to close
        with contextlib.suppress(OSError):
            if writer.can_write_eof():
                writer.write_eof()
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
