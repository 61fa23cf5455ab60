"""
Real-time notifications.

- broadcaster: in-process fan-out of lifecycle events to SSE subscribers
- api: the /events stream and client-originated event relay
- client: a reconnecting SSE consumer for scripts and smoke checks
"""
