from fastapi import HTTPException, Request
from app.core.errors import StorefrontError

def get_db(request: Request):
    database = request.app.state.db
    with database.session() as db:
        yield db

def http_error(e: StorefrontError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message or e.__class__.__name__)
