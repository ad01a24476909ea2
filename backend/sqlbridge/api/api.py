from fastapi import APIRouter
from sqlbridge.api.endpoints import auth, connections, schema, query, audit, users

api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(connections.router, prefix="/connections", tags=["connections"])
api_router.include_router(schema.router, prefix="/schema", tags=["schema"])
api_router.include_router(query.router, prefix="/query", tags=["query"])
api_router.include_router(audit.router, prefix="/admin/audit", tags=["admin"])
api_router.include_router(users.router, prefix="/admin/users", tags=["admin"])
