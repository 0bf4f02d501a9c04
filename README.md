# mesg

mesg is a small message broker. It keeps its queues in memory and serves them
over gRPC. A second port serves plain HTTP with the protocol description and
per-queue counters in a text metrics format.

## Installation

```
pip install .
```

Install the test dependencies with `pip install .[test]`.

## Running the server

```
mesg
```

Options:

| Option | Default | Meaning |
| --- | --- | --- |
| `-d`, `--db-path` | `""` | storage path; accepted but unused, the storage is in memory |
| `-p`, `--port` | `35000` | gRPC listening port |
| `-m`, `--metric-port` | `35001` | HTTP port for `/proto` and `/metrics` |

Example:

```
mesg --port 37000 --metric-port 37001
```

Both servers listen on `0.0.0.0`. Stop the server with Ctrl-C.

The log level is read from the `MESG_LOG` environment variable. It accepts
`trace`, `debug`, `info`, `warn`, `warning`, `error` and `off`. The default is
`info`, and an unknown value also means `info`. Log output goes to standard
error. The `grpc` loggers are switched off.

## How delivery works

- **Queues are created on first use.** A push, pull, commit or rollback on a
  name that is not known yet creates that queue.
- **Ordinary messages are load-balanced.** Each one is delivered to exactly one
  consumer. That consumer can belong to any application pulling from the
  queue. Messages come out in the order they were pushed.
- **Broadcast messages** (`is_broadcast = true`) get a copy in the private
  ready queue of every application that has pulled from the queue. Suppose a
  broadcast is pushed before any application has pulled from the queue. Then
  it is held, and it goes to the applications that show up before the next
  cleanup pass. Cleanup passes run every 0.5 seconds.
- **An application's private ready queue comes first.** It holds broadcast
  copies, rolled-back messages and expired messages. A pull is served from it
  before the shared queue.
- **Visibility timeout.** A delivered message stays invisible for
  `invisibility_timeout_ms`. Within that time the consumer should commit it or
  roll it back. If the deadline passes first, the message goes back to the
  private ready queue of the application that took it, and is delivered again.
- **Rollback** puts the message at the front of that application's ready
  queue, so it is delivered again at once.
- **Consumer polling.** Each pull stream has its own background poller. The
  poller backs off from 10 ms up to 500 ms while the queue is empty. When the
  client disconnects, the consumer is removed and its poller is stopped.

## The protocol

The service is `grpc.MesgProtocol` and has four methods:

- `Push(PushRequest{queue, data, is_broadcast}) -> PushResponse{success}`
- `Pull(PullRequest{queue, application, invisibility_timeout_ms}) -> stream PullResponse{id, data}`
- `Commit(CommitRequest{id, queue, application}) -> CommitResponse{success}`
- `Rollback(RollbackRequest{id, queue, application}) -> RollbackResponse{success}`

Message ids are UUID strings. `Commit` and `Rollback` fail with status
`INVALID_ARGUMENT` when the id is not a valid UUID. They return
`success = false` in these cases:

- the message is not currently delivered to that application, for example
  because the id is unknown;
- the message was already committed;
- the message was taken by a different application.

## HTTP endpoints

- `GET /proto` returns a proto3 description of the protocol, as
  `application/protobuf`.
- `GET /metrics` returns plain text with these counters, each labelled by
  queue:
  - `mesg_push_ops`
  - `mesg_commit_ops`
  - `mesg_rollback_ops`
  - `mesg_consumers_count`
- Any other path returns 404.

## Using it from Python

You can embed the broker in your own asyncio program:

```python
import asyncio

from mesg.server import MesgServer, MesgServerOptions


async def run():
    server = MesgServer()
    await server.start(MesgServerOptions(port=37000, metric_port=37001))
    try:
        await server.wait()
    finally:
        await server.stop()

asyncio.run(run())
```

`MesgServer.run(options)` does the same in one call. Pass port `0` to let the
system pick a free port. After `start`, the port in use is in `server.port`,
and the HTTP port is in `server.auxiliary.port`.

The modules:

- `mesg.protocol` contains the wire messages: `PushRequest`, `PushResponse`,
  `PullRequest`, `PullResponse`, `CommitRequest`, `CommitResponse`,
  `RollbackRequest` and `RollbackResponse`. Each has `encode()` and the class
  method `decode(data)`. The module also has `PROTOFILE` and the method table
  `METHODS`. With these, a client built on `grpcio` can talk to the server.
- `mesg.storage.Storage` can be used on its own, inside a running event loop.
  Create it with `await Storage.create()`. It has `push`, `pop`, `commit` and
  `rollback`, and `close()` stops its cleanup task.
- `mesg.metrics.MetricsWriter` holds the counters, and `write()` renders them
  as text.

## What it does not do

- Nothing is persisted. All queues live in memory and are lost when the
  process exits. `--db-path` has no effect.
- There is no clustering or replication. It is a single process.
- There is no TLS and no authentication. Both ports are plain text.
- No ready-made client is included. Only the message classes in
  `mesg.protocol` are provided.