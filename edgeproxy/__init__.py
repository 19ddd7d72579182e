"""Building blocks for an edge proxy: forwarding headers, SNI peeking, PROXY protocol, listeners and TCP servers."""

__version__ = "0.1.0"