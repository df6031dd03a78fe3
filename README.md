# mtcomm

`mtcomm` is a small message-passing library built around handles. A
connector (`ConnType`) listens, connects and polls for ready handles. A
handle (`Handle`) sends and receives whole messages, with an empty message
acting as the end-of-stream marker. A `HandleUser` is what application code
holds: it tracks whether the handle is readable or is a fresh connection,
and it hands the handle back to its connector when you are done with it.

It needs only the standard library and runs on POSIX systems.

## Transports

- **TCP** (`mtcomm.tcp`): every message travels as an 8-byte big-endian
  length header followed by the payload; a zero-length header is end of
  stream. `ConnTCP.listen("host:port")` binds a listening socket (port 0
  picks a free one, recorded in `ConnTCP.port`), `ConnTCP.connect` opens a
  connection with optional retries, and `ConnTCP.update` accepts new
  connections and reports yielded handles that have become readable.
  Connections are `HandleTCP` objects.
- **Shared memory** (`mtcomm.shm_buffer`, `mtcomm.shm`): `ShmBuffer` is a
  single-slot message buffer in a named shared-memory segment (under
  `/dev/shm` when it exists). Messages larger than the slot pass through it
  in chunks. `ConnSHM` builds bidirectional connections from a pair of such
  buffers; its handles are `HandleSHM` objects.

Until a caller installs its own `add_in_queue` callback on a connector,
events reported by `update` — `(is_new_connection, handle)` pairs — are
kept in the connector's `pending` deque.

Tunable limits and timeouts live in `mtcomm.config`.

## Working with handles

```python
from mtcomm.tcp import ConnTCP
from mtcomm.handle_user import HandleUser

conn = ConnTCP()
conn.init("client")
handle = conn.connect("localhost:42000", 5, 1000)

with HandleUser(handle, True, False) as user:
    user.send(b"ping")
    size = user.probe(True)      # size of the next message, 0 on end of stream
    if size:
        reply = user.receive(size)
    user.close()                 # shut the write side, sending end of stream
```

`HandleUser.yield_control()` gives the handle back to its connector so it
can report the next incoming message; `HandleUser.is_closed()` returns
`(read_closed, write_closed)`. Errors are raised as `OSError` subclasses:
`BlockingIOError` when a non-blocking probe finds nothing, `OSError` with
`EBADF` for an invalid or write-closed handle.

## The TCP wire format

```python
from mtcomm.tcp import encode_header, decode_header

header = encode_header(5)         # 8 bytes, big-endian length
assert decode_header(header) == 5
```

## Collective layouts

`mtcomm.collectives` computes how a buffer is split among the members of a
team for broadcast, scatter, gather, all-gather and all-to-all operations:
equal shares of whole data items, with the remainder spread one item at a
time over the lowest ranks. `partition`, `team_partition_size`,
`broadcast_size` and the `scatter_layout`, `gather_layout`,
`allgather_layout` and `alltoall_layout` functions return sizes or a
`Layout` (counts, displacements and the size the calling rank ends up
with) and raise `ValueError` where a buffer is too small or a size is not a
multiple of the item size.

## Helpers for tests and benchmarks

- `mtcomm.pingpong`: self-checking ping/pong messages (`MsgHeader`, `Kind`,
  `build_ping`, `make_pong`, `validate_pong`, `fill_payload`,
  `check_payload`) with a deterministic payload.
- `mtcomm.team_config`: names and configuration text for a master/worker
  team, such as `team_string(3)` giving `"Master:Worker1:Worker2"`, plus
  `world_rank_size_from_env`, `listen_endpoint`, `render_config` and the
  `temp_config` context manager that writes and later removes a config file.
- `mtcomm.perf`: message-size series (`message_sizes`), latency statistics
  (`latency_stats`, `LatencyStats`), `bandwidth_mb_s` and `format_table`
  for a round-trip benchmark report.

## What it does not do

- There is no central manager: nothing drives several connectors, waits
  for the next ready handle across them, or creates teams. You call each
  connector's `update` yourself and consume its events.
- Only TCP and shared memory are implemented. `mtcomm.config` carries
  parameters for other transports, but no MPI, MQTT or UCX connector
  exists.
- The collectives module computes layouts only; it moves no data between
  processes.
- There are no command-line programs.