"""SSE relay — fan-out of Redis pub/sub events to Server-Sent Event streams.

Browsers hold one long-lived stream per interest key (a product's bid
feed, a user's message feed). Producers publish JSON events onto Redis
channels keyed the same way, and the relay forwards each event to the
streams registered under that key.
"""

__version__ = "0.1.0"
