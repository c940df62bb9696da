"""FastAPI dependencies: the state layer built by the lifespan."""
from fastapi import Request

from policy_bot.core.exceptions import BusinessError
from policy_bot.state.services import StateServices


def get_state_services(request: Request) -> StateServices:
    services = getattr(request.app.state, "state_services", None)
    if services is None:
        raise BusinessError.service_unavailable("state services not initialised")
    return services
