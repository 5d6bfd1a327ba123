"""Per-listing cancellation policy management"""

import logging
import uuid
from typing import Any, Dict, Mapping, Optional
from sqlalchemy.orm import Session

from workspace_refunds.domain.exceptions import AuthorizationError, NotFoundError, ValidationError
from workspace_refunds.domain.models import CancellationPolicy, PolicyValidation
from workspace_refunds.domain.policies import (
    DEFAULT_POLICY_TYPE,
    POLICY_TEMPLATES,
    get_policy_templates,
    validate_policy,
)
from workspace_refunds.infrastructure.database.repositories import ListingRepository
from workspace_refunds.utils.date_utils import utc_now

logger = logging.getLogger(__name__)


class PolicyManager:
    """Validates, stores and serves listing cancellation policies"""

    def __init__(self, db: Session):
        self.db = db
        self.listings = ListingRepository(db)

    def set_policy(
        self,
        listing_id: uuid.UUID,
        policy_data: Mapping[str, Any],
        owner_id: Optional[str] = None,
    ) -> CancellationPolicy:
        """
        Validate and store a listing's policy.

        created_at survives updates; updated_at is stamped on every write.
        When owner_id is given it must match the listing owner.

        Raises:
            ValidationError: policy_data is invalid (errors lists every violation)
            NotFoundError: unknown listing
            AuthorizationError: owner_id does not own the listing
        """
        validation = self.validate_policy(policy_data)
        if not validation.valid:
            raise ValidationError(f"Invalid policy: {', '.join(validation.errors)}", validation.errors)

        listing = self.listings.get(listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        if owner_id is not None and listing.owner_id != owner_id:
            raise AuthorizationError("Unauthorized: You do not own this listing")

        now = utc_now()
        existing = listing.cancellation_policy or {}
        stored = dict(policy_data)
        stored["created_at"] = existing.get("created_at") or now.isoformat()
        stored["updated_at"] = now.isoformat()

        self.listings.save_policy(listing, stored)
        self.db.commit()

        logger.info("Cancellation policy updated", extra={"listing_id": str(listing_id), "type": stored["type"]})
        return CancellationPolicy.from_dict(stored)

    def get_policy(self, listing_id: uuid.UUID) -> CancellationPolicy:
        """
        Listing's policy, or the moderate preset when none is configured.

        Reading never writes the default back to the listing.
        """
        listing = self.listings.get(listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")

        policy = listing.cancellation_policy
        if not policy or not policy.get("type"):
            return CancellationPolicy.from_dict(POLICY_TEMPLATES[DEFAULT_POLICY_TYPE])
        return CancellationPolicy.from_dict(policy)

    def validate_policy(self, policy_data: Mapping[str, Any]) -> PolicyValidation:
        return validate_policy(policy_data)

    def get_policy_templates(self) -> Dict[str, Dict[str, Any]]:
        return get_policy_templates()
