"""Real-time core — Redis pub/sub in, Server-Sent Events out.

Events flow one way:
1. Producers → Redis PUBLISH on sse:product:{id} / sse:user:{id}
2. Redis PSUBSCRIBE → SubscriptionManager → ConnectionRegistry → SSE streams

The pieces, leaves first: frames (wire format), registry (who is
listening to which key), bus (the Redis connection and its reconnect
state machine), subscriber (pattern subscription + demux), watcher
(connectivity edges), service (wires it all together).
"""
