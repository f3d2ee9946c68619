import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medibook.auth import jwt_handler
from medibook.auth.dependencies import Actor, get_current_actor
from medibook.core import config
from medibook.database import get_db
from medibook.models.user import User
from medibook.schemas import LoginRequest, LoginResponse

router = APIRouter(tags=["auth"])

logger = logging.getLogger(__name__)


def role_for_email(email: str) -> str:
    return "admin" if email in config.ADMIN_EMAILS else "user"


@router.post("/login", response_model=LoginResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    role = role_for_email(data.email)

    try:
        user = db.query(User).filter(User.id == data.email).first()
        if user is None:
            user = User(id=data.email, role=role)
            db.add(user)
        else:
            user.role = role
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to record login for %s", data.email)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable. Verify DATABASE_URL.",
        ) from exc

    token = jwt_handler.create_access_token(subject=data.email, role=role)
    return LoginResponse(access_token=token, user_id=data.email, role=role)


@router.get("/me")
def me(actor: Actor = Depends(get_current_actor)):
    return {"userId": actor.user_id, "role": actor.role}
