"""Request dependencies shared by the API routers."""
from __future__ import annotations

from typing import Optional

from fastapi import Header

from ... import app_context
from ..billing import SubscriberIdentity


def get_current_subscriber(
    subscriber_id: Optional[str] = Header(None, alias="X-Subscriber-Id"),
    email: Optional[str] = Header(None, alias="X-Subscriber-Email"),
    display_name: Optional[str] = Header(None, alias="X-Subscriber-Name"),
) -> SubscriberIdentity:
    return app_context.get_current_subscriber(
        subscriber_id=subscriber_id,
        email=email,
        display_name=display_name,
    )
