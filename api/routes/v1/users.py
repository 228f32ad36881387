"""
api/routes/v1/users.py -- Admin user management routes.

Routes (all under /api/v1, admin role required):
  GET    /users              -- list accounts (public fields only)
  PATCH  /users/{user_id}    -- change role, active flag or display name

Guards on PATCH:
  An admin cannot deactivate their own account.
  The last active admin cannot be demoted or deactivated.
"""

from fastapi import APIRouter, Depends, Request

from api.models import UserPatch, UserResponse
from auth.dependencies import get_principal, require_roles
from auth.errors import Forbidden, ValidationFailed
from auth.models import Principal, Role
from auth.store import UserStore

# get_principal must precede require_roles: the role check reads the
# principal it attaches to request.state.
router = APIRouter(dependencies=[Depends(get_principal), Depends(require_roles(Role.admin))])


def _users(request: Request) -> UserStore:
    return request.app.state.auth.users


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request) -> list[UserResponse]:
    return [UserResponse.from_user(u) for u in _users(request).list_users()]


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    principal: Principal = Depends(get_principal),
) -> UserResponse:
    """Apply a partial update to another account.

    Role changes take effect at the user's next login; tokens already issued
    keep the role they were signed with until they expire.
    """
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise ValidationFailed("No fields to update.")

    store = _users(request)
    target = store.require(user_id)

    if fields.get("is_active") is False and target.id == principal.id:
        raise Forbidden("You cannot deactivate your own account.")

    loses_admin = fields.get("is_active") is False or ("role" in fields and fields["role"] != Role.admin.value)
    if target.role is Role.admin and target.is_active and loses_admin and store.count_active_admins() <= 1:
        raise Forbidden("Cannot remove the last active admin.")

    store.update_user(user_id, **fields)
    return UserResponse.from_user(store.require(user_id))
