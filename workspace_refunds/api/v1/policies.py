"""Listing cancellation policy endpoints"""

from typing import Any, Dict
from fastapi import APIRouter, Body, Depends

from workspace_refunds.api.dependencies import get_current_user_id, get_policy_manager, parse_uuid
from workspace_refunds.api.v1.schemas import PolicyResponse, PolicyValidationResponse
from workspace_refunds.services.policies import PolicyManager

router = APIRouter()


@router.get("/policies/templates")
def list_policy_templates(policies: PolicyManager = Depends(get_policy_manager)) -> Dict[str, Any]:
    """Preset policies owners can start from"""
    return {"templates": policies.get_policy_templates()}


@router.post("/policies/validate", response_model=PolicyValidationResponse)
def validate_policy(
    policy_data: Dict[str, Any] = Body(...),
    policies: PolicyManager = Depends(get_policy_manager),
):
    """Check a policy document without saving it; reports every violation"""
    validation = policies.validate_policy(policy_data)
    return PolicyValidationResponse(valid=validation.valid, errors=validation.errors)


@router.get("/listings/{listing_id}/cancellation-policy", response_model=PolicyResponse)
def get_listing_policy(listing_id: str, policies: PolicyManager = Depends(get_policy_manager)):
    policy = policies.get_policy(parse_uuid(listing_id, "listing_id"))
    return PolicyResponse.from_domain(policy)


@router.put("/listings/{listing_id}/cancellation-policy", response_model=PolicyResponse)
def set_listing_policy(
    listing_id: str,
    policy_data: Dict[str, Any] = Body(...),
    owner_id: str = Depends(get_current_user_id),
    policies: PolicyManager = Depends(get_policy_manager),
):
    """Replace the listing's policy; only the listing owner may do this"""
    policy = policies.set_policy(parse_uuid(listing_id, "listing_id"), policy_data, owner_id=owner_id)
    return PolicyResponse.from_domain(policy)
