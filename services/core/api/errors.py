"""Domain exception -> HTTP response mapping"""
from fastapi import HTTPException

from exceptions import BaseLifecycleException, EXCEPTION_TO_STATUS


def map_exception_to_http(exc: BaseLifecycleException) -> HTTPException:
    """
    Map domain exception to HTTP response.

    Args:
        exc: Domain exception from service layer

    Returns:
        HTTPException with proper status code and structured error payload
    """
    exception_class = type(exc)
    status_code = EXCEPTION_TO_STATUS.get(exception_class, 500)

    return HTTPException(status_code=status_code, detail=exc.to_dict())
