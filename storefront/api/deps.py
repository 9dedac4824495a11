from fastapi import Depends, HTTPException, Request

from storefront.identity import Actor, HeaderIdentityProvider
from storefront.services.notification_service import NotificationDispatcher

identity_provider = HeaderIdentityProvider()


def get_actor(request: Request) -> Actor:
    actor = identity_provider.current_actor(request)
    if actor is None:
        raise HTTPException(401, "Missing caller identity")
    return actor


def get_dispatcher(request: Request) -> NotificationDispatcher | None:
    return getattr(request.app.state, "dispatcher", None)


def require(capability: str):
    def checker(actor: Actor = Depends(get_actor)) -> Actor:
        if not actor.can(capability):
            raise HTTPException(403, "Unauthorized access")
        return actor

    return checker
