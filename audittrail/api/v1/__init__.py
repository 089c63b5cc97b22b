from fastapi import APIRouter
from audittrail.api.v1 import auth, history, users, content

api_router = APIRouter()

# History routes are registered before /admin/users/{user_id}
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(history.router, prefix="/admin", tags=["audit"])
api_router.include_router(users.router, tags=["users"])
api_router.include_router(content.router, prefix="/admin", tags=["moderation"])
