"""Live progress streaming.

- **multiplexer**: in-memory fan-out keyed by execution and by owner
- **sinks**: bounded queue sink consumed by SSE responses
- **sse**: replay-then-follow generators for the SSE endpoints
"""
