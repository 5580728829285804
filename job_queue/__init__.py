"""
Delay Queue — Decouples notification scheduling from dispatch.

- The scheduler PUBLISHES notifications with a per-message delay
- Dispatcher workers CONSUME them once the delay has elapsed
- Supports Redis Streams (production) and in-memory asyncio.Queue (dev)
"""
