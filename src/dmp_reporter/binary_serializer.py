import struct
from typing import Any, Dict, List, Optional, Tuple

from .types import ServerDescriptor

# Message type identifiers
HEARTBEAT_ID = 0
# Bump when the report payload layout changes
REPORTING_PROTOCOL_ID = 2

KNOWN_MESSAGE_TYPES = (HEARTBEAT_ID, REPORTING_PROTOCOL_ID)

# uint32 message type + uint32 payload length
HEADER_FORMAT = '<II'
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)

# Receivers refuse anything larger than this
MAX_PAYLOAD_SIZE = 1024 * 1024


class EncodingError(Exception):
    """Raised when a report cannot be encoded from its descriptor."""


class UnknownMessageTypeError(ValueError):
    """Raised when a frame carries a message type this protocol does not know."""

    def __init__(self, message_type: int) -> None:
        self.message_type = message_type
        super().__init__(f"Unknown message type: {message_type}")


# Helper functions for common operations
def _pack_int(buffer: bytearray, value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"{name} must be an int, got {value!r}")
    try:
        buffer.extend(struct.pack('<i', value))
    except struct.error as e:
        raise EncodingError(f"{name} out of range: {value}") from e

def _pack_long(buffer: bytearray, value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"{name} must be an int, got {value!r}")
    try:
        buffer.extend(struct.pack('<q', value))
    except struct.error as e:
        raise EncodingError(f"{name} out of range: {value}") from e

def _pack_bool(buffer: bytearray, value: bool, name: str) -> None:
    if not isinstance(value, bool):
        raise EncodingError(f"{name} must be a bool, got {value!r}")
    buffer.append(1 if value else 0)

def _pack_string(buffer: bytearray, string: str, name: str) -> None:
    """Pack a string with an int32 byte-length prefix into buffer"""
    if not isinstance(string, str):
        raise EncodingError(f"{name} must be a str, got {string!r}")
    string_bytes = string.encode('utf-8')
    buffer.extend(struct.pack('<i', len(string_bytes)))
    buffer.extend(string_bytes)

def _pack_string_list(buffer: bytearray, strings, name: str) -> None:
    if strings is None:
        raise EncodingError(f"{name} must be a list of str, got None")
    items = list(strings)
    buffer.extend(struct.pack('<i', len(items)))
    for index, item in enumerate(items):
        _pack_string(buffer, item, f"{name}[{index}]")

def _unpack_string(data: bytes, offset: int) -> Tuple[str, int]:
    """Unpack an int32 length-prefixed string from data"""
    length = struct.unpack_from('<i', data, offset)[0]
    offset += 4
    if length < 0 or offset + length > len(data):
        raise ValueError(f"Invalid string length {length} at offset {offset - 4}")
    string = data[offset:offset+length].decode('utf-8')
    return string, offset + length


def serialize_frame(message_type: int, payload: bytes = b'') -> bytes:
    """Prefix a payload with the frame header"""
    buffer = bytearray(struct.pack(HEADER_FORMAT, message_type, len(payload)))
    buffer.extend(payload)
    return bytes(buffer)

def serialize_heartbeat() -> bytes:
    """Zero-length frame that keeps the connection from idling out"""
    return serialize_frame(HEARTBEAT_ID)

def encode_report(identity_hash: str, descriptor: ServerDescriptor) -> bytes:
    """Encode the report payload.

    Field order and widths are part of the wire protocol; changing them
    requires bumping REPORTING_PROTOCOL_ID.
    """
    if descriptor is None:
        raise EncodingError("descriptor is None")

    buffer = bytearray()
    _pack_string(buffer, identity_hash, 'identity_hash')
    _pack_string(buffer, descriptor.server_name, 'server_name')
    _pack_string(buffer, descriptor.description, 'description')
    _pack_int(buffer, descriptor.port, 'port')
    _pack_string(buffer, descriptor.game_address, 'game_address')
    _pack_int(buffer, descriptor.protocol_version, 'protocol_version')
    _pack_string(buffer, descriptor.program_version, 'program_version')
    _pack_int(buffer, descriptor.max_players, 'max_players')
    _pack_int(buffer, descriptor.mod_control, 'mod_control')
    _pack_string(buffer, descriptor.mod_control_sha, 'mod_control_sha')
    _pack_int(buffer, descriptor.game_mode, 'game_mode')
    _pack_bool(buffer, descriptor.cheats, 'cheats')
    _pack_int(buffer, descriptor.warp_mode, 'warp_mode')
    _pack_long(buffer, descriptor.universe_size, 'universe_size')
    _pack_string(buffer, descriptor.banner, 'banner')
    _pack_string(buffer, descriptor.homepage, 'homepage')
    _pack_int(buffer, descriptor.http_port, 'http_port')
    _pack_string(buffer, descriptor.admin, 'admin')
    _pack_string(buffer, descriptor.team, 'team')
    _pack_string(buffer, descriptor.location, 'location')
    _pack_bool(buffer, descriptor.fixed_ip, 'fixed_ip')
    _pack_string_list(buffer, descriptor.players, 'players')
    if len(buffer) > MAX_PAYLOAD_SIZE:
        raise EncodingError(
            f"Report payload is {len(buffer)} bytes, limit is {MAX_PAYLOAD_SIZE}"
        )
    return bytes(buffer)

def serialize_report(identity_hash: str, descriptor: ServerDescriptor) -> bytes:
    """Encode a report and wrap it in a frame"""
    return serialize_frame(REPORTING_PROTOCOL_ID, encode_report(identity_hash, descriptor))


def deserialize_header(data: bytes, offset: int = 0) -> Optional[Tuple[int, int]]:
    """Return (message_type, payload_length), or None if the header is incomplete"""
    if len(data) - offset < HEADER_SIZE:
        return None
    return struct.unpack_from(HEADER_FORMAT, data, offset)

def deserialize_frame(data: bytes, offset: int = 0) -> Tuple[int, Optional[bytes], int]:
    """Split one frame off the front of a receive buffer.

    Returns:
        Tuple of (message_type, payload, consumed). payload is None and
        consumed is 0 when the buffer does not yet hold a complete frame.

    Raises:
        UnknownMessageTypeError: The header names a message type we do not handle.
        ValueError: The declared payload length is over MAX_PAYLOAD_SIZE.
    """
    header = deserialize_header(data, offset)
    if header is None:
        return 0, None, 0

    message_type, length = header
    if message_type not in KNOWN_MESSAGE_TYPES:
        raise UnknownMessageTypeError(message_type)
    if length > MAX_PAYLOAD_SIZE:
        raise ValueError(f"Payload length {length} exceeds {MAX_PAYLOAD_SIZE}")

    start = offset + HEADER_SIZE
    if len(data) - start < length:
        return message_type, None, 0
    return message_type, bytes(data[start:start+length]), HEADER_SIZE + length

def decode_report(payload: bytes) -> Dict[str, Any]:
    """Decode a report payload into a dict keyed by wire field name"""
    result: Dict[str, Any] = {}
    offset = 0

    def read_int(fmt: str) -> int:
        nonlocal offset
        value = struct.unpack_from(fmt, payload, offset)[0]
        offset += struct.calcsize(fmt)
        return value

    def read_string() -> str:
        nonlocal offset
        value, offset = _unpack_string(payload, offset)
        return value

    def read_bool() -> bool:
        nonlocal offset
        value = payload[offset] != 0
        offset += 1
        return value

    result['serverHash'] = read_string()
    result['serverName'] = read_string()
    result['description'] = read_string()
    result['port'] = read_int('<i')
    result['gameAddress'] = read_string()
    result['protocolVersion'] = read_int('<i')
    result['programVersion'] = read_string()
    result['maxPlayers'] = read_int('<i')
    result['modControl'] = read_int('<i')
    result['modControlSha'] = read_string()
    result['gameMode'] = read_int('<i')
    result['cheats'] = read_bool()
    result['warpMode'] = read_int('<i')
    result['universeSize'] = read_int('<q')
    result['banner'] = read_string()
    result['homepage'] = read_string()
    result['httpPort'] = read_int('<i')
    result['admin'] = read_string()
    result['team'] = read_string()
    result['location'] = read_string()
    result['fixedIP'] = read_bool()

    players: List[str] = []
    for _ in range(read_int('<i')):
        players.append(read_string())
    result['players'] = players

    if offset != len(payload):
        raise ValueError(f"{len(payload) - offset} trailing bytes after report")
    return result
