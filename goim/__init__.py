"""Building blocks for a push-based instant messaging service: wire protocol, comet buckets and rooms, load balancing, push messages and the push job."""

__version__ = "2.0.0"