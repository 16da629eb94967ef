"""
Role → capability mapping and the single authorization check performed at the
engine boundary. Services call ``authorize`` once, before touching the store.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import PermissionDeniedError

logger = logging.getLogger(__name__)

STUDENT = "student"
TEACHER = "teacher"
ADMIN = "admin"
ROLES = (STUDENT, TEACHER, ADMIN)

# Student capabilities
VIEW_OWN_RESERVATIONS = "view_own_reservations"
CREATE_RESERVATION = "create_reservation"
CANCEL_OWN_RESERVATION = "cancel_own_reservation"
SELECT_PROBLEM = "select_problem"
VIEW_OWN_TICKETS = "view_own_tickets"

# Teacher capabilities
VIEW_ALL_RESERVATIONS = "view_all_reservations"
CREATE_PROBLEM = "create_problem"
PUBLISH_PROBLEM = "publish_problem"
ARCHIVE_PROBLEM = "archive_problem"
MANAGE_OWN_SLOTS = "manage_own_slots"

# Admin capabilities
ISSUE_TICKETS = "issue_tickets"
MANAGE_RESERVATION_SLOTS = "manage_reservation_slots"
BOOK_ON_BEHALF = "book_on_behalf"
RUN_SCHEDULER = "run_scheduler"

ROLE_CAPABILITIES = {
    STUDENT: {
        VIEW_OWN_RESERVATIONS,
        CREATE_RESERVATION,
        CANCEL_OWN_RESERVATION,
        SELECT_PROBLEM,
        VIEW_OWN_TICKETS,
    },
    TEACHER: {
        VIEW_ALL_RESERVATIONS,
        CREATE_PROBLEM,
        PUBLISH_PROBLEM,
        ARCHIVE_PROBLEM,
        MANAGE_OWN_SLOTS,
    },
    ADMIN: {
        VIEW_OWN_RESERVATIONS,
        VIEW_ALL_RESERVATIONS,
        CREATE_RESERVATION,
        CANCEL_OWN_RESERVATION,
        ISSUE_TICKETS,
        MANAGE_RESERVATION_SLOTS,
        BOOK_ON_BEHALF,
        RUN_SCHEDULER,
    },
}


@dataclass(frozen=True)
class CallerContext:
    """Identity supplied by the identity provider; the role is trusted as given"""

    account_id: int
    role: str
    name: Optional[str] = None

    def can(self, capability: str) -> bool:
        return capability in ROLE_CAPABILITIES.get(self.role, set())

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


def authorize(caller: CallerContext, capability: str) -> CallerContext:
    """Return the caller unchanged if it holds ``capability``, else raise"""
    if not caller.can(capability):
        logger.warning(
            f"Account {caller.account_id} ({caller.role}) denied capability '{capability}'"
        )
        raise PermissionDeniedError(
            "You do not have permission to perform this action.", capability=capability
        )
    return caller
