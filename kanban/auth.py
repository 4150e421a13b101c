from typing import Optional

from fastapi import Header

ANONYMOUS = "anonymous"


def get_actor(
    authorization: Optional[str] = Header(default=None),
    x_actor: Optional[str] = Header(default=None, alias="X-Actor"),
) -> str:
    """Identify who is acting, for logs and activity records only.

    Sessions are verified upstream; the bearer token is taken as the user
    identifier, falling back to ``X-Actor``.
    """
    prefix = "Bearer "
    if authorization and authorization.startswith(prefix):
        user_id = authorization[len(prefix) :].strip()
        if user_id:
            return user_id
    if x_actor and x_actor.strip():
        return x_actor.strip()
    return ANONYMOUS
