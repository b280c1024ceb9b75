'''
API endpoints for recording exceptions on recurring class series.
'''
from typing import Annotated
from fastapi import APIRouter, Depends, status

from ..database import models as db_models
from ..database.db_enums import ExceptionActionEnum
from ..models import class_exceptions as exception_models
from ..services.security import verify_token_and_get_user
from ..services.class_exception_service import ClassExceptionService


class ClassExceptionsAPI:
    """
    A class to encapsulate the class exception endpoints.
    """
    def __init__(self):
        self.router = APIRouter(
            prefix="/class-exceptions",
            tags=["Class Exceptions"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "",
                self.create_exception,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=exception_models.ClassExceptionResponse)
        self.router.add_api_route(
                "/future",
                self.create_future_exceptions,
                methods=["POST"],
                status_code=status.HTTP_201_CREATED,
                response_model=exception_models.FutureClassExceptionsResponse)

    async def create_exception(
        self,
        exception_data: exception_models.ClassExceptionCreate,
        current_user: Annotated[db_models.Profiles, Depends(verify_token_and_get_user)],
        exception_service: Annotated[ClassExceptionService, Depends(ClassExceptionService)]
    ):
        """
        Cancels or reschedules a single occurrence of a series.
        Restricted to the owning teacher.
        """
        exception = await exception_service.record_single_exception(
            exception_data.original_class_id,
            exception_data.exception_date,
            exception_data.action,
            exception_data.new_data,
            current_user
        )
        if exception_data.action == ExceptionActionEnum.CANCEL:
            message = "Class cancelled successfully"
        else:
            message = "Class rescheduled successfully"
        return exception_models.ClassExceptionResponse(exception=exception, message=message)

    async def create_future_exceptions(
        self,
        exception_data: exception_models.FutureClassExceptionsCreate,
        current_user: Annotated[db_models.Profiles, Depends(verify_token_and_get_user)],
        exception_service: Annotated[ClassExceptionService, Depends(ClassExceptionService)]
    ):
        """
        Cancels or reschedules every occurrence from `from_date` on (up to
        `end_date`, one year ahead by default). Restricted to the owning teacher.
        """
        affected = await exception_service.record_recurring_exceptions(
            exception_data.original_class_id,
            exception_data.from_date,
            exception_data.action,
            exception_data.new_data,
            exception_data.end_date,
            current_user
        )
        verb = "cancelled" if exception_data.action == ExceptionActionEnum.CANCEL else "rescheduled"
        return exception_models.FutureClassExceptionsResponse(
            affected_count=affected,
            message=f"{affected} future class(es) {verb} successfully"
        )


# Instantiate the class and export its router
class_exceptions_api = ClassExceptionsAPI()
router = class_exceptions_api.router
