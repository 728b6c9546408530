"""Real-time infrastructure — chat rooms over WebSocket.

Learn: Live delivery has three layers:
1. ChannelBroker — in-process rooms (match_id → connections)
2. WebSocket endpoint — authenticates sockets, handles join/leave
3. RedisRelay (optional) — fans broadcasts out to other processes

The database stays authoritative; live delivery is best-effort.
"""
