from busbook.src import openobserve
from busbook.src.db import User, UserToken
from busbook.src.schemas import RequestInfo


def logEvent(
    token: UserToken | None,
    requestInfo: RequestInfo,
    data: dict,
    user: User | None = None,
) -> None:
    """
    Log an event to OpenObserve with request and user context.

    Args:
        token (UserToken | None): Token of the authenticated account, None for
            anonymous requests such as customer registration.
        requestInfo (RequestInfo): Metadata about the current request.
        data (dict): Additional event-specific details to include in the log.
        user (User | None): The acting account, adds its role to the event.

    Notes:
        - Automatically attaches `_app_id`, `_method`, `_path`, `_client`
          and, when known, `_user_id` and `_role`.
    """
    logDetails = {
        "_method": requestInfo.method,
        "_path": requestInfo.path,
        "_app_id": requestInfo.app_id,
        "_client": requestInfo.client,
    }

    if token is not None:
        logDetails["_user_id"] = token.user_id
    if user is not None:
        logDetails["_user_id"] = user.id
        logDetails["_role"] = user.role

    logDetails.update(data)
    openobserve.logEvent(logDetails)
