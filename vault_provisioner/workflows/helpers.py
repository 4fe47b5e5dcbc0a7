"""
Workflow Helper Functions for the Vault Provisioner.

Utility functions shared by the provisioning and confirmation workflows:
input validation, mapping errors to operator-facing replies and
best-effort reply delivery.
"""

import logging
import re
from typing import Callable, Optional

from ..errors import ErrorCategory, VaultProvisionerError
from ..models import UserFacingResult

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

SUPPORT_HINT = "Contact the projects team for help."


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def validate_email(email: Optional[str]) -> bool:
    """
    Check that an address looks like an email before any lookup is made.

    Args:
        email: Address supplied by the operator

    Returns:
        True if the address is well-formed
    """
    return bool(email) and EMAIL_PATTERN.match(email.strip()) is not None


def invalid_email_result(email: Optional[str]) -> UserFacingResult:
    return UserFacingResult(
        title="Invalid Email",
        description=f"Please provide a valid email address. {SUPPORT_HINT}",
        success=False,
        level="error",
        email=email or None,
    )


def unexpected_error_result(email: Optional[str] = None) -> UserFacingResult:
    """Generic reply for failures that have no specific mapping."""
    return UserFacingResult(
        title="Something Went Wrong",
        description=f"An unexpected error occurred. {SUPPORT_HINT}",
        success=False,
        level="error",
        email=email,
    )


def account_setup_required(email: Optional[str] = None) -> UserFacingResult:
    return UserFacingResult(
        title="Account Setup Required",
        description=("You haven't created an account or accepted the invitation. "
                     "Please check your email, create your account on the password manager "
                     "website, then try confirmation again."),
        success=False,
        level="info",
        email=email,
    )


def user_message_for_error(error: VaultProvisionerError, email: Optional[str] = None) -> UserFacingResult:
    """
    Map a provisioning error to the reply shown to the operator.

    Raw API messages are shown only for generic API errors, where they are
    the most useful thing to display; everything else gets a fixed message.

    Args:
        error: The error raised by a connector or workflow step
        email: Target email, echoed in the reply

    Returns:
        UserFacingResult describing the failure
    """
    category = error.category

    if category == ErrorCategory.PRECONDITION_NOT_MET:
        return account_setup_required(email)

    if category == ErrorCategory.ALREADY_EXISTS:
        return UserFacingResult(
            title="Already Invited",
            description=f"{email or 'This user'} already has a pending invitation or an account in the vault.",
            success=False,
            level="info",
            email=email,
        )

    if category == ErrorCategory.AUTHENTICATION:
        return UserFacingResult(
            title="Vault Unavailable",
            description=f"The password manager rejected our credentials. {SUPPORT_HINT}",
            success=False,
            level="error",
            email=email,
        )

    if category == ErrorCategory.TRANSPORT:
        return UserFacingResult(
            title="Vault Unreachable",
            description="Could not reach the password manager. Please try again in a few minutes.",
            success=False,
            level="error",
            email=email,
        )

    message = (error.message or "").strip()
    if "user in invalid state" in message.lower():
        return account_setup_required(email)

    if category == ErrorCategory.API_ERROR and message:
        return UserFacingResult(title="Error!", description=message, success=False,
                                level="error", email=email)

    return unexpected_error_result(email)


def deliver_reply(send: Callable[[UserFacingResult], object], result: UserFacingResult) -> bool:
    """
    Deliver a reply without letting a delivery failure escape.

    Args:
        send: Callable that delivers the result (chat reply, webhook...)
        result: Reply to deliver

    Returns:
        True if the reply was handed over successfully
    """
    try:
        delivered = send(result)
    except Exception as e:
        logger.error(f"Could not deliver reply '{result.title}' for {result.email}: {e}")
        return False

    if delivered is False:
        logger.warning(f"Reply '{result.title}' for {result.email} was not delivered")
        return False
    return True
