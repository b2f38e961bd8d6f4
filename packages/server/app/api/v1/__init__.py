"""
API v1 Router

Tenant-scoped endpoints take the organization from the caller's credentials
(session's active organization or the API key's tenant), never from the path.
"""

from fastapi import APIRouter

from . import invitations, members, organizations, tenants, todos

router = APIRouter()

router.include_router(organizations.router, prefix="/organizations", tags=["Organizations"])
router.include_router(members.router, prefix="/members", tags=["Members"])
router.include_router(invitations.router, prefix="/invitations", tags=["Invitations"])
router.include_router(todos.router, prefix="/todos", tags=["Todos"])
router.include_router(todos.tags_router, prefix="/tags", tags=["Tags"])
router.include_router(tenants.tenant_router, prefix="/tenant", tags=["Tenant"])
router.include_router(tenants.admin_router, prefix="/admin/tenants", tags=["Admin"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and resource collections."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/organizations",
            "/members",
            "/invitations",
            "/todos",
            "/tags",
            "/tenant",
            "/admin/tenants",
        ],
    }
