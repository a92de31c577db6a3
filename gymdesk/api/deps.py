"""Shared route dependencies."""
from fastapi import Depends

from gymdesk.core.auth import CurrentUser, require_role
from gymdesk.features.members.service import get_or_create_member
from gymdesk.models.member import Member


def get_current_member(user: CurrentUser = Depends(require_role("member"))) -> Member:
    """Member profile of the signed-in user; first-time users get one created."""
    return get_or_create_member(user.user_id)
