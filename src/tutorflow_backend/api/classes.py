'''
API endpoints for classes: booking, recurring series generation, series
end, occurrence listing, cancellation and amnesty.
'''
from datetime import datetime
from typing import Annotated, List
from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from ..database import models as db_models
from ..database.db_enums import UserRole, CancelledByTypeEnum
from ..models import classes as class_models
from ..models import cancellation as cancellation_models
from ..services.security import verify_token_and_get_user
from ..services.class_service import ClassService
from ..services.recurrence_service import RecurrenceService
from ..services.class_exception_service import ClassExceptionService
from ..services.cancellation_service import CancellationService
from ..services.email_service import EmailService, get_email_service
from ..common.logger import log


class ClassesAPI:
    """
    A class to encapsulate the endpoints acting on classes and series.
    """
    def __init__(self):
        self.router = APIRouter(
            prefix="/classes",
            tags=["Classes"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "",
                self.create_class,
                methods=["POST"],
                response_model=class_models.ClassRead,
                status_code=status.HTTP_201_CREATED)
        self.router.add_api_route(
                "/generate",
                self.generate_classes,
                methods=["POST"],
                response_model=class_models.GenerateClassesResponse)
        self.router.add_api_route(
                "/{series_id}/end-recurrence",
                self.end_recurrence,
                methods=["POST"],
                response_model=class_models.EndRecurrenceResponse)
        self.router.add_api_route(
                "/{series_id}/occurrences",
                self.list_occurrences,
                methods=["GET"],
                response_model=List[class_models.OccurrenceRead])
        self.router.add_api_route(
                "/{class_id}/cancel",
                self.cancel_class,
                methods=["POST"],
                response_model=cancellation_models.CancellationResponse)
        self.router.add_api_route(
                "/{class_id}/amnesty",
                self.grant_amnesty,
                methods=["POST"],
                response_model=cancellation_models.AmnestyResponse)

    async def create_class(
        self,
        request_data: class_models.ClassCreate,
        current_user: Annotated[db_models.Profiles, Depends(verify_token_and_get_user)],
        class_service: Annotated[ClassService, Depends(ClassService)]
    ):
        """
        Books a class, or the first occurrence of a recurring series when a
        recurrence pattern is given. **Restricted to Teachers.**
        """
        return await class_service.create_class(request_data, current_user)

    async def generate_classes(
        self,
        request_data: class_models.GenerateClassesRequest,
        current_user: Annotated[db_models.Profiles, Depends(verify_token_and_get_user)],
        recurrence_service: Annotated[RecurrenceService, Depends(RecurrenceService)]
    ):
        """
        Called by the calendar whenever its visible window changes. Materializes
        the teacher's infinite series up to the end of the window plus a buffer.
        **Restricted to Teachers.**
        """
        try:
            generated = await recurrence_service.check_and_generate_classes(
                current_user,
                request_data.view_start,
                request_data.view_end,
                request_data.selected_students
            )
            return class_models.GenerateClassesResponse(generated=generated)
        except HTTPException:
            raise
        except Exception as e:
            log.error(f"Unexpected error generating classes for {current_user.id}: {e}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to generate recurring classes."
            )

    async def end_recurrence(
        self,
        series_id: UUID,
        request_data: class_models.EndRecurrenceRequest,
        current_user: Annotated[db_models.Profiles, Depends(verify_token_and_get_user)],
        recurrence_service: Annotated[RecurrenceService, Depends(RecurrenceService)]
    ):
        """
        Ends a series at the given date. Restricted to the owning teacher.
        """
        deleted = await recurrence_service.end_recurrence(series_id, request_data.end_date, current_user)
        return class_models.EndRecurrenceResponse(
            deleted_count=deleted,
            message=f"Recurrence ended, {deleted} future class(es) removed."
        )

    async def list_occurrences(
        self,
        series_id: UUID,
        current_user: Annotated[db_models.Profiles, Depends(verify_token_and_get_user)],
        exception_service: Annotated[ClassExceptionService, Depends(ClassExceptionService)],
        start: datetime = Query(...),
        end: datetime = Query(...)
    ):
        """
        Lists the occurrences of a series within [start, end] with exceptions applied.
        """
        return await exception_service.list_occurrences(series_id, start, end, current_user)

    async def cancel_class(
        self,
        class_id: UUID,
        request_data: cancellation_models.CancellationRequest,
        background_tasks: BackgroundTasks,
        current_user: Annotated[db_models.Profiles, Depends(verify_token_and_get_user)],
        cancellation_service: Annotated[CancellationService, Depends(CancellationService)],
        email_service: Annotated[EmailService, Depends(get_email_service)]
    ):
        """
        Cancels a class. A student cancelling late may be charged according to
        the teacher's cancellation policy; a teacher is never charged.
        Notification e-mails go out after the response.
        """
        if current_user.role == UserRole.TEACHER.value:
            cancelled_by_type = CancelledByTypeEnum.TEACHER
        else:
            cancelled_by_type = CancelledByTypeEnum.STUDENT

        outcome = await cancellation_service.evaluate_cancellation(
            class_id,
            current_user,
            request_data.reason,
            cancelled_by_type
        )
        if outcome.emails:
            background_tasks.add_task(email_service.send_many, outcome.emails)

        return cancellation_models.CancellationResponse(charged=outcome.charged, message=outcome.message)

    async def grant_amnesty(
        self,
        class_id: UUID,
        current_user: Annotated[db_models.Profiles, Depends(verify_token_and_get_user)],
        cancellation_service: Annotated[CancellationService, Depends(CancellationService)]
    ):
        """
        Waives the late-cancellation charge of a class. Restricted to the owning teacher.
        """
        message = await cancellation_service.grant_amnesty(class_id, current_user)
        return cancellation_models.AmnestyResponse(message=message)


# Instantiate the class and export its router
classes_api = ClassesAPI()
router = classes_api.router
