"""
Server List Ping packet helpers.

Every length field and packet id of the protocol is a VarInt: 7 data bits per
byte, least significant group first, with 0x80 set on every byte but the last.

See https://minecraft.wiki/w/Java_Edition_protocol/Server_List_Ping
"""

import struct

from .exceptions import FrameUnderrun, MalformedVarint

VARINT_MAX_BYTES = 5
"""一个 32 位 VarInt 最多占用的字节数"""
UINT32_MAX = 0xFFFFFFFF

HANDSHAKE_PACKET_ID = 0x00
STATUS_REQUEST_PACKET_ID = 0x00
STATUS_NEXT_STATE = 1
"""握手后进入的状态（1 为 status，2 为 login）"""

FRAME_HEADER_FIELDS = 3
"""响应中负载前的字段数：包长度、包 ID、字符串长度"""


def is_last(byte: int) -> bool:
    """Whether ``byte`` terminates a VarInt (continuation bit clear)."""
    return not byte & 0x80


def pack_varint(value: int) -> bytes:
    """Small helper method for packing a varint from an unsigned 32-bit int."""
    if not 0 <= value <= UINT32_MAX:
        raise ValueError(f"VarInt out of range: {value}")

    ordinal = b""

    while True:
        byte = value & 0x7F
        value >>= 7
        ordinal += struct.pack("B", byte | (0x80 if value > 0 else 0))

        if value == 0:
            break

    return ordinal


def unpack_varint(data: bytes | bytearray, offset: int = 0) -> tuple[int, int]:
    """
    Unpack a VarInt from ``data`` starting at ``offset``.

    :param data: Buffer holding the VarInt
    :param offset: Index of the first VarInt byte
    :return: (value, number of bytes consumed)
    """
    value = 0
    for i in range(VARINT_MAX_BYTES):
        if offset + i >= len(data):
            raise MalformedVarint("buffer exhausted inside VarInt")

        byte = data[offset + i]
        value |= (byte & 0x7F) << 7 * i

        if is_last(byte):
            # the fifth byte may only carry the top 4 bits of a 32-bit value
            if value > UINT32_MAX:
                raise MalformedVarint("VarInt exceeds 32 bits")
            return value, i + 1

    raise MalformedVarint("VarInt too long")


def pack_string(text: str) -> bytes:
    """UTF-8 string prefixed with its byte length as a VarInt."""
    raw = text.encode("utf8")
    return pack_varint(len(raw)) + raw


def build_packet(packet_id: int, payload: bytes | bytearray = b"") -> bytes:
    """
    Assemble ``[length][packet id][payload]``.

    The length counts the encoded packet id and the payload, not itself.
    """
    body = pack_varint(packet_id) + bytes(payload)
    return pack_varint(len(body)) + body


def build_handshake(
    host: str,
    port: int,
    protocol_version: int,
    next_state: int = STATUS_NEXT_STATE,
) -> bytes:
    """
    Construct the Handshake packet.

    :param host: Server address as written into the packet
    :param port: Server port
    :param protocol_version: Advertised protocol version
    :param next_state: 1 for status, 2 for login
    """
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"Port out of range: {port}")

    req_data = pack_varint(protocol_version)
    # Server address. Encoded with UTF8
    req_data += pack_string(host)
    # Server port
    req_data += struct.pack(">H", port)
    # Next packet state
    req_data += pack_varint(next_state)

    return build_packet(HANDSHAKE_PACKET_ID, req_data)


def build_status_request() -> bytes:
    """Empty status request: varint len (1), 0x00"""
    return build_packet(STATUS_REQUEST_PACKET_ID)


def strip_frame(buffer: bytes | bytearray) -> int:
    """
    Skip the outer packet length, the packet id and the string length.

    Only the continuation bits are looked at, the values themselves are not
    trusted: a truncated response is common, so the JSON decoder is what
    actually validates the payload.

    :param buffer: Raw response as read from the socket
    :return: Offset of the first payload byte
    """
    cursor = 0
    for _ in range(FRAME_HEADER_FIELDS):
        while True:
            if cursor >= len(buffer):
                raise FrameUnderrun(
                    f"response ended after {len(buffer)} bytes inside the frame header"
                )
            byte = buffer[cursor]
            cursor += 1
            if is_last(byte):
                break

    return cursor


def frame_payload(buffer: bytes | bytearray) -> bytes:
    """The payload bytes following the frame header."""
    return bytes(buffer[strip_frame(buffer) :])
