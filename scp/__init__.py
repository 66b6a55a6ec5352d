"""
SCP (Simple Chat Protocol) v1 - multi-user chat over one TCP connection per client.

Wire format: 4-byte big-endian length + UTF-8 JSON, one message per frame.
The server authenticates nothing; it checks a CONNECT handshake, hands out
unique usernames, and routes chat either to one user or to everyone else.

Modules:
- framing:  length-prefixed frames over asyncio streams
- messages: message models, parser, validator
- registry: username -> session directory with fan-out
- session:  per-connection state machine
- server:   listener, capacity checks, shutdown
- client:   client-side connection helper
- config:   server config and hosts alias files
"""
__all__ = ["framing", "messages", "registry", "session", "server", "client", "config", "errors", "logs", "run"]
