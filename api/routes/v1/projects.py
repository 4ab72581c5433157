"""
api/routes/v1/projects.py -- Project membership endpoints.

Routes:
  PUT    /api/v1/projects/{project_id}/members/{user_id}  -- set a member's role
  DELETE /api/v1/projects/{project_id}/members/{user_id}  -- remove a member

Both are project-scoped mutations, so both call
AuthorizationEngine.ensure_project_permission() before touching the store.

Rules:
  - Caller needs ADMIN on the project.
  - Granting OWNER, or changing/removing an existing OWNER, needs OWNER.
  - Storage failures surface as StorageError (503), including a concurrent
    first insert that loses on UNIQUE(project_id, user_id).
  - The project itself is owned by an external collaborator; here a project
    exists only through its project_roles rows.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import SQLAlchemyError

from api.models import MemberResponse, MemberRoleUpdate, RoleEnum
from auth.errors import StorageError
from auth.middleware import require_identity
from auth.models import Identity, Role
from auth.permissions import AuthorizationEngine
from auth.store import AuthStore

router = APIRouter()


@router.put("/projects/{project_id}/members/{user_id}", response_model=MemberResponse)
def set_member_role(
    request: Request,
    project_id: str,
    user_id: str,
    body: MemberRoleUpdate,
    identity: Identity = Depends(require_identity),
) -> MemberResponse:
    """Create or change a membership. Unknown target users return 404."""
    store: AuthStore = request.app.state.store
    authz: AuthorizationEngine = request.app.state.authz

    authz.ensure_project_permission(identity, project_id, Role.ADMIN)
    new_role = Role[body.role.value]
    try:
        current_role = Role.parse(store.get_project_role(project_id, user_id))
        if Role.OWNER in (new_role, current_role):
            authz.ensure_project_permission(identity, project_id, Role.OWNER)

        if store.get_user_by_id(user_id) is None:
            raise HTTPException(
                status_code=404,
                detail={"code": "not_found", "message": "User not found."},
            )

        store.set_project_role(project_id, user_id, new_role.name)
    except SQLAlchemyError as exc:
        raise StorageError("Failed to update project membership.") from exc
    return MemberResponse(project_id=project_id, user_id=user_id, role=RoleEnum(new_role.name))


@router.delete("/projects/{project_id}/members/{user_id}", status_code=204)
def remove_member(
    request: Request,
    project_id: str,
    user_id: str,
    identity: Identity = Depends(require_identity),
) -> Response:
    store: AuthStore = request.app.state.store
    authz: AuthorizationEngine = request.app.state.authz

    authz.ensure_project_permission(identity, project_id, Role.ADMIN)
    try:
        current_role = store.get_project_role(project_id, user_id)
        if current_role is None:
            raise HTTPException(
                status_code=404,
                detail={"code": "not_found", "message": "Membership not found."},
            )
        if Role.parse(current_role) is Role.OWNER:
            authz.ensure_project_permission(identity, project_id, Role.OWNER)

        store.remove_project_role(project_id, user_id)
    except SQLAlchemyError as exc:
        raise StorageError("Failed to remove project member.") from exc
    return Response(status_code=204)
