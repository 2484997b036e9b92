# portbridge

portbridge carries a single TCP stream, typically an SSH session, between two
machines. It does not put the stream on one connection. It uses a pool of
parallel TCP connections instead. Each chunk of the stream gets a 16-bit
sequence number and is sent on whichever pooled connection is idle. The
receiving side puts the chunks back in order before it writes them out.

There are two roles:

* **server**: runs next to the SSH daemon. It accepts pooled connections from
  the client and lets in only the ones that authenticate. The first time data
  arrives it opens a connection to the configured SSH address, and then it
  relays in both directions. If writing to that connection fails, the server
  reconnects once. If that also fails, the server stops.
* **client**: runs where the user is. It keeps up to ten authenticated
  connections open to the server. It also listens on a local port that your
  SSH client connects to. When the local SSH connection closes, the client
  sends an SSHFIN message, and the server then closes its own SSH connection.
  The client stops when it can no longer reach the server.

## Installation

```
pip install .
```

## Usage

Start the server on the machine that can reach the SSH daemon:

```
portbridge -d 5566 -sh 127.0.0.1:22
```

Start the client on your own machine and point it at the server:

```
portbridge -h server.example.com:5566 -d 2222
```

Then connect through the bridge:

```
ssh -p 2222 user@localhost
```

If `-h` is given, the program runs as a client. Otherwise it runs as a server.
When the server or client stops because of a connection error, the command
exits with status 1.

### Options

| Option     | Meaning                                                                 |
|------------|-------------------------------------------------------------------------|
| `-d PORT`  | Port to listen on: the pool port on the server, the local port on the client |
| `-h ADDR`  | Server address as `host:port`; selects client mode                      |
| `-k KEY`   | Encryption key; it is stored in the configuration but not used yet (see below) |
| `-sh ADDR` | SSH address the server relays to (default `127.0.0.1:22`)               |
| `-help`    | Print the options and exit                                              |

## Wire format

Every frame starts with a 5-byte header: a 4-byte big-endian body length
followed by a 1-byte message type.

| Type | Name     | Body                                                     |
|------|----------|----------------------------------------------------------|
| 1    | DATA     | 2-byte big-endian sequence number, then the payload      |
| 2    | SSHFIN   | empty; the far side closed its SSH connection            |
| 3    | SSHRESET | empty; the receiver resets both sequence counters to 0   |
| 4    | AUTH     | 8-byte big-endian Unix time, then a 16-byte MD5 digest   |
| 5    | AUTHACK  | one byte, `1` on success                                 |

Each new pooled connection must begin with an AUTH frame. The digest is the
MD5 of the decimal timestamp followed by a salt built into the package. The
server accepts the frame only when the timestamp is within ten seconds of its
own clock and the digest matches. It then replies with AUTHACK.

## Library use

The pieces can also be used directly from Python:

```python
import io

from portbridge.protocol import DataPacket, MessageType, decode_packet

frame = DataPacket(seq_id=7, data=b"hello").marshal()
packet = decode_packet(io.BytesIO(frame))
assert packet.type == MessageType.DATA
assert packet.payload.data == b"hello"
```

* `portbridge.protocol` contains the packet classes (`DataPacket`,
  `AuthPacket`, `AuthAckPacket`, `Packet`). It also contains
  `encode_frame`, `build_auth_frame`, `build_auth_ack_frame`, `auth_digest`
  and `decode_packet`. `decode_packet` reads from a socket or from a binary
  file object, and raises `ProtocolError` on bad or truncated frames.
* `portbridge.pool.Pool` sends numbered chunks over its connections and
  reorders the chunks it receives.
* `portbridge.server.Server` provides the server role. It is built on
  `verify_auth` and raises `AuthError` when authentication fails.
* `portbridge.client.Client` provides the client role. `connect_once` opens
  and authenticates a single pooled connection.
* `portbridge.crypto.AesGcmEncryptor` does AES-128-GCM. The key is derived
  with `derive_key`, and a random 12-byte nonce is prepended to each
  ciphertext.

## Limitations

* Frames travel unencrypted. The `encrypt`/`decrypt` hooks in
  `portbridge.crypto` pass data through unchanged, and the `-k` key is not
  applied. `AesGcmEncryptor` exists but is not wired into the protocol.
* The authentication salt is fixed in the package and cannot be configured.
* Only one SSH session is carried at a time. A new local connection to the
  client replaces the previous one.

## Running the tests

```
pip install .[test]
pytest
```