"""
SSH agent wire protocol: length-prefixed frames and the extension message.

Every message is ``uint32 length | byte type | body`` with a big-endian
length counting the type byte and the body.
"""
import struct
from typing import Iterator, NamedTuple, Optional, Tuple

from .errors import ProtocolError

# Message numbers from the agent protocol (draft-miller-ssh-agent)
SSH_AGENT_FAILURE = 5
SSH_AGENT_SUCCESS = 6
SSH_AGENTC_EXTENSION = 27
SSH_AGENT_EXTENSION_FAILURE = 28

HEADER = struct.Struct('> I B')
UINT32 = struct.Struct('> I')

# Refuse absurd lengths instead of trying to buffer them
MAX_FRAME_LENGTH = 256 * 1024


class Frame(NamedTuple):
    type: int
    body: bytes = b""

    def encode(self) -> bytes:
        """Return the frame as it is sent on the wire."""
        return HEADER.pack(1 + len(self.body), self.type) + bytes(self.body)


def _recv_exactly(conn, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        chunk = conn.recv(size - len(buf))
        if not chunk:
            raise ProtocolError(
                "connection closed after {} of {} bytes".format(len(buf), size))
        buf.extend(chunk)
    return bytes(buf)


def read_frame(conn) -> Optional[Frame]:
    """
    Read one frame from a connected socket.

    Returns:
        The frame, or None when the peer closed the connection cleanly
        (no bytes at all, or a zero length field).

    Raises:
        ProtocolError: If the peer closes in the middle of a frame
    """
    first = conn.recv(UINT32.size)
    if not first:
        return None
    length = UINT32.unpack(first + _recv_exactly(conn, UINT32.size - len(first)))[0]
    if length == 0:
        return None
    if length > MAX_FRAME_LENGTH:
        raise ProtocolError("frame length {} exceeds limit".format(length))

    payload = _recv_exactly(conn, length)
    return Frame(payload[0], payload[1:])


def write_frame(conn, msg_type: int, body: bytes = b"") -> None:
    """Send one frame with a single sendall()."""
    conn.sendall(Frame(msg_type, body).encode())


def request(conn, msg_type: int, body: bytes = b"") -> Frame:
    """
    Send a frame and wait for the single reply frame.

    Only used on connections where we are the client.
    """
    write_frame(conn, msg_type, body)
    reply = read_frame(conn)
    if reply is None:
        raise ProtocolError("connection closed before a reply was received")
    return reply


def pack_string(value) -> bytes:
    """Encode an agent protocol 'string' (uint32 length + bytes)."""
    if isinstance(value, str):
        value = value.encode('utf-8')
    return UINT32.pack(len(value)) + bytes(value)


def unpack_string(buf: bytes, offset: int = 0) -> Tuple[bytes, int]:
    """
    Decode an agent protocol 'string' starting at offset.

    Returns:
        Tuple of (value, offset just past the string)
    """
    if offset + UINT32.size > len(buf):
        raise ProtocolError("truncated string length at offset {}".format(offset))
    size = UINT32.unpack_from(buf, offset)[0]
    offset += UINT32.size
    if offset + size > len(buf):
        raise ProtocolError("string of {} bytes exceeds message".format(size))
    return bytes(buf[offset:offset + size]), offset + size


def encode_extension(ext_id: str, sub_type: int, sub_body: bytes = b"") -> bytes:
    """Build the body of an SSH_AGENTC_EXTENSION request."""
    return pack_string(ext_id) + struct.pack('> B', sub_type) + bytes(sub_body)


def decode_extension(body: bytes) -> Tuple[str, int, bytes]:
    """
    Split an SSH_AGENTC_EXTENSION body.

    Returns:
        Tuple of (extension id, sub type, sub body)

    Raises:
        ProtocolError: If the body is not a valid extension request
    """
    raw_id, offset = unpack_string(body)
    if offset >= len(body):
        raise ProtocolError("extension request without sub type")
    try:
        ext_id = raw_id.decode('utf-8')
    except UnicodeDecodeError:
        raise ProtocolError("extension id is not valid UTF-8")
    return ext_id, body[offset], bytes(body[offset + 1:])


def hex_dump_chunks(msg: bytes) -> Iterator[str]:
    for i in range(0, len(msg), 16):
        yield " ".join("{:02x}".format(c) for c in msg[i:i + 16])
