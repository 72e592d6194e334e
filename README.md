# goim

Building blocks for a push-based instant messaging service, using only the
standard library. The pieces follow the roles of such a service:

- **comet** – holds client connections. A connection's state is a
  `goim.channel.Channel`; channels are spread over buckets
  (`goim.bucket.Bucket`) by a 32-bit CityHash of their key and may join rooms
  (`goim.room.Room`). Each channel keeps a bounded ring of client frames
  (`goim.ring.Ring`). `goim.comet_server.CometServer` owns the buckets, hands
  client operations (change room, subscribe, unsubscribe, anything else is
  forwarded) and calls a logic client you supply. `goim.comet_rpc.CometService`
  handles push, broadcast and room-broadcast requests against a server.
  `goim.whitelist` writes a trace log for selected member ids.
- **logic** – `goim.balancer.LoadBalancer` ranks comet nodes by weight versus
  current connections, and `goim.publisher.Publisher` publishes push messages
  (`goim.publisher.PushMsg`) through a producer object you supply.
- **job** – `goim.job.Job` decodes published push messages, batches room
  messages (`goim.job.JobRoom`) and forwards them to every known comet through
  `goim.job_comet.Comet`, which spreads requests over worker threads.

## Wire protocol

Every frame has a 16-byte big-endian header followed by the body:

| field       | size |
|-------------|------|
| pack length | 4    |
| header len  | 2    |
| version     | 2    |
| operation   | 4    |
| sequence    | 4    |

The body may be at most 4096 bytes. Operation codes live in `goim.protocol.Op`;
frames are handled by `goim.protocol.Proto`:

```python
from goim.protocol import Proto

frame = Proto.decode(data)      # raises PackLengthError / HeaderLengthError
again = frame.encode()          # bytes ready to send
```

Over a byte stream, use `Proto.read_from(stream)` (raises `EOFError` when the
stream ends) and `proto.write_to(stream)`; a frame whose operation is
`Op.RAW` is written as its body alone. Heartbeat replies carrying a room's
online count come from `encode_heartbeat(online)` and
`write_heartbeat_to(stream, online)`.

## Room keys

Rooms are addressed as `type://id`:

```python
from goim.model import encode_room_key, decode_room_key

key = encode_room_key("live", "1000")   # "live://1000"
typ, room = decode_room_key(key)        # ("live", "1000")
```

## Push messages

`PushMsg.encode()` writes compact JSON with the body in base64 and
`PushMsg.decode()` reads it back. `Publisher(producer, topic)` calls
`producer.send(topic, key, value)` for `push_msg`, `broadcast_room_msg` and
`broadcast_msg`. `Job(config, client_factory).consume(messages)` takes those
encoded messages and returns how many were pushed without error; call
`new_address(instances_by_zone)` first so the job knows its comets.

## Configuration

Each role has a configuration module: `goim.comet_config`,
`goim.logic_config` and `goim.job_config`. In each, `parse_options(argv,
environ)` reads command-line flags with environment fallbacks (`REGION`,
`ZONE`, `DEPLOY_ENV`, and where relevant `WEIGHT`, `ADDRS`, `OFFLINE`,
`DEBUG`), `default_config(options)` builds the defaults, and
`load_config(path, options)` overlays a TOML file on top of them. Durations
are float seconds and accept strings such as `"1h30m"` or `"100ms"`
(`goim.comet_config.parse_duration`).

## What the package does not do

- It opens no sockets: there is no TCP or websocket listener and no RPC
  transport. Frames are read from and written to streams you provide, and the
  logic client, comet clients and message producer are objects you supply.
- It stores no sessions: there is no key-to-server mapping or shared online
  count storage.
- It has no HTTP API and no command-line programs to start.