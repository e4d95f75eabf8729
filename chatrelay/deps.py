from fastapi import Request

from chatrelay.context import RelayContext
from chatrelay.errors import service_unavailable


async def get_relay(request: Request) -> RelayContext:
    """
    FastAPI dependency returning the relay context created in the lifespan.

    Tests can override this dependency with a context built around fake
    Redis and upstream clients.
    """
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise service_unavailable("Relay is not started")
    return relay


__all__ = ["get_relay"]
