# minirediskv

A small key-value server that speaks the Redis serialization protocol (RESP).
When it starts, it loads string keys from an RDB snapshot. It can run as a
master or as a replica of another master.

## Installation

```
pip install .
```

## Running the server

```
minirediskv --port 6379 --dir /tmp/redis-data --dbfilename dump.rdb
```

Each option can also be written with a single dash, for example `-port 6379`.

- `--port`: the TCP port to listen on. The default is `6379`.
- `--dir`: the directory that holds the RDB file. The default is `/tmp/redis-data`.
- `--dbfilename`: the name of the RDB file. The default is `dump.rdb`.
- `--replicaof "<host> <port>"`: run as a replica of the given master. The
  default is `nil`, which means the server runs as a master.

If the RDB file is missing, the server creates the directory and an empty file.
It then loads every entry it can read from the snapshot, along with each
entry's recorded expiry. If the file is malformed, reading stops at the first
bad entry and the entries read up to that point are kept.

The process exits with status 1 in two cases: it cannot bind to the port, or a
`KEYS *` command cannot read the snapshot file. In the second case the server
also stops accepting clients.

### Running a replica

```
minirediskv --port 6380 --replicaof "localhost 6379"
```

The replica connects to the master and performs the handshake: `PING`,
`REPLCONF listening-port <port>`, `REPLCONF capa psync2` and then `PSYNC ? -1`.
It then reads the snapshot that the master sends and discards it. After that
it applies the `SET` commands the master forwards. It answers
`REPLCONF GETACK *` with `REPLCONF ACK <offset>`, where the offset is the
number of bytes it has counted from the master's stream before that request.

## Supported commands

Command names are case-insensitive.

| Command | Reply |
|---|---|
| `PING` | `PONG` |
| `ECHO msg` | `msg` |
| `SET key value [px ms]` | `OK`. The raw command is also forwarded to connected replicas. |
| `GET key` | The value, or a null bulk string if the key is missing or has expired. |
| `TYPE key` | `string` for a live key, `none` otherwise |
| `KEYS *` | Every key in the RDB file on disk |
| `CONFIG GET dir` / `CONFIG GET dbfilename` | The parameter name and its configured value |
| `INFO replication` | The role, the replication id and the offset |
| `SAVE` | `OK` |
| `REPLCONF ...` | `OK` (master only) |
| `PSYNC ? -1` | `FULLRESYNC <replid> 0`, followed by an empty RDB snapshot (master only). The connection is registered as a replica. |
| `WAIT n timeout` | The number of registered replica connections (master only) |

Any other input gets the reply `-ERR unknown command`. A message that is not a
valid RESP array gets `-ERR Parsing failed`.

## Using it as a library

```python
from minirediskv.resp import parse_resp, encode_bulk
from minirediskv.rdb import read_keys

parse_resp("*2\r\n$4\r\nECHO\r\n$3\r\nhey\r\n")  # ["ECHO", "hey"]
encode_bulk("hey")                              # b"$3\r\nhey\r\n"
read_keys("/tmp/redis-data/dump.rdb")           # keys stored in the snapshot
```

- `minirediskv.resp` parses RESP arrays with `parse_resp` and encodes replies
  with `encode_bulk`, `encode_array`, `encode_simple`, `encode_error` and
  `encode_integer`. Parse failures raise `RespError`.
- `minirediskv.rdb` reads snapshots: `iter_entries`, `parse_keys` and
  `read_keys` raise `RdbError` on bad data, while `load_entries` and
  `load_file` return what could be read.
- `minirediskv.store.Store` holds the data in memory and handles key expiry.
  `minirediskv.store.Config` holds the server settings.
- `minirediskv.commands.CommandProcessor` runs parsed commands against a store
  and returns the reply bytes. `ReplicaSet` holds the replica connections.
- `minirediskv.replica.ReplicaLink` is the replica side of replication.
- `minirediskv.server.RedisServer` is the TCP server, and
  `minirediskv.server.main` is the command-line entry point.

## Limitations

- Only string values are supported.
- Data is kept in memory only. `SAVE` replies `OK` but writes nothing, and the
  snapshot file is never updated.
- `KEYS *` lists the keys in the snapshot file, not the keys set since the
  server started.
- `WAIT` does not wait for acknowledgements. It replies at once with the
  number of registered replicas.
- A master always reports a replication offset of `0`.