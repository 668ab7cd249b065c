from fastapi import APIRouter

from roster.api.v1 import students

api_router = APIRouter()

api_router.include_router(students.router, prefix="/students", tags=["students"])
