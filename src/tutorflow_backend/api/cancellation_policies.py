'''
API endpoints for the teacher's cancellation policy settings.
'''
from typing import Annotated
from fastapi import APIRouter, Depends

from ..database import models as db_models
from ..models import cancellation as cancellation_models
from ..services.security import verify_token_and_get_user
from ..services.policy_service import CancellationPolicyService


class CancellationPolicyAPI:
    def __init__(self):
        self.router = APIRouter(
            prefix="/cancellation-policy",
            tags=["Cancellation Policy"]
        )
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "",
                self.get_policy,
                methods=["GET"],
                response_model=cancellation_models.CancellationPolicyRead)
        self.router.add_api_route(
                "",
                self.update_policy,
                methods=["PUT"],
                response_model=cancellation_models.CancellationPolicyRead)

    async def get_policy(
        self,
        current_user: Annotated[db_models.Profiles, Depends(verify_token_and_get_user)],
        policy_service: Annotated[CancellationPolicyService, Depends(CancellationPolicyService)]
    ):
        """
        Returns the teacher's active policy, or the defaults when none is set.
        **Restricted to Teachers.**
        """
        return await policy_service.get_policy_for_api(current_user)

    async def update_policy(
        self,
        policy_data: cancellation_models.CancellationPolicyWrite,
        current_user: Annotated[db_models.Profiles, Depends(verify_token_and_get_user)],
        policy_service: Annotated[CancellationPolicyService, Depends(CancellationPolicyService)]
    ):
        """
        Creates or updates the teacher's cancellation policy.
        **Restricted to Teachers.**
        """
        return await policy_service.upsert_policy(policy_data, current_user)


# Instantiate the class and export its router
cancellation_policy_api = CancellationPolicyAPI()
router = cancellation_policy_api.router
