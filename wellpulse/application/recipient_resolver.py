"""
Recipient Resolver - who a broadcast goes to.

Turns a targeting rule into the concrete list of active employees that have a
usable contact address.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from ..domain.errors import NoEligibleRecipients, NoValidContacts
from ..domain.models import Recipient, Targeting, TargetingMode
from ..infrastructure.persistence import Database

logger = logging.getLogger(__name__)


@dataclass
class ResolvedRecipients:
    """Eligible recipients plus how many were dropped for lack of a phone."""
    recipients: List[Recipient] = field(default_factory=list)
    skipped_without_contact: int = 0

    def __iter__(self):
        return iter(self.recipients)

    def __len__(self):
        return len(self.recipients)


class RecipientResolver:
    """
    Usage:
        resolver = RecipientResolver(db)
        resolved = resolver.resolve("org_1", "department", target_departments=["Ops"])
    """

    def __init__(self, db: Database):
        self._db = db

    def resolve(
        self,
        organization_id: str,
        targeting_mode: Union[TargetingMode, str],
        target_departments: Optional[Iterable[str]] = None,
        target_employee_ids: Optional[Iterable[str]] = None,
    ) -> ResolvedRecipients:
        """
        Resolve active employees for a targeting mode.

        Raises:
            NoEligibleRecipients: Targeting matched nobody.
            NoValidContacts: Everyone matched has an empty phone.
        """
        mode = TargetingMode(targeting_mode)

        if mode is TargetingMode.DEPARTMENT:
            candidates = self._db.get_active_employees(
                organization_id, departments=list(target_departments or [])
            )
        elif mode is TargetingMode.SPECIFIC:
            candidates = self._db.get_active_employees(
                organization_id, employee_ids=list(target_employee_ids or [])
            )
        else:
            candidates = self._db.get_active_employees(organization_id)

        if not candidates:
            logger.info(f"No active employees match {mode.value} targeting in {organization_id}")
            raise NoEligibleRecipients(organization_id)

        eligible = [employee for employee in candidates if employee.has_contact]
        skipped = len(candidates) - len(eligible)

        if skipped:
            logger.info(f"Skipping {skipped} employee(s) without a phone number in {organization_id}")

        if not eligible:
            raise NoValidContacts(organization_id, skipped)

        logger.info(f"Resolved {len(eligible)} recipient(s) for {mode.value} targeting in {organization_id}")
        return ResolvedRecipients(recipients=eligible, skipped_without_contact=skipped)

    def resolve_for(self, organization_id: str, targeting: Targeting) -> ResolvedRecipients:
        """Resolve using a broadcast's stored targeting."""
        return self.resolve(
            organization_id,
            targeting.mode,
            target_departments=targeting.departments,
            target_employee_ids=targeting.employee_ids,
        )
