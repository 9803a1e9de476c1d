from fastapi import APIRouter, Depends, HTTPException, Request, status

from timetrack.db_models import User
from timetrack.dependencies import get_store
from timetrack.models.user import Token, UserCreate, UserLogin, UserResponse, to_user_response
from timetrack.services.auth import (
    authenticate_user,
    create_access_token,
    get_current_user,
    register_user,
)
from timetrack.services.entry_store import EntryStore
from timetrack.utils.logger import logger

router = APIRouter(prefix="/api/auth", tags=["authentication"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, store: EntryStore = Depends(get_store)):
    logger.info(f"Registration attempt for email: {user_data.email}")
    user = register_user(store, user_data.email, user_data.name, user_data.password)
    return to_user_response(user)


@router.post("/login", response_model=Token)
async def login(
    user_credentials: UserLogin,
    request: Request,
    store: EntryStore = Depends(get_store),
):
    rid = getattr(request.state, "rid", "unknown")
    logger.info(f"Login attempt email={user_credentials.email} rid={rid}")

    user = authenticate_user(store, user_credentials.email, user_credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "INVALID_CREDENTIALS", "message": "Incorrect email or password"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "USER_INACTIVE", "message": "User account is disabled"},
        )

    access_token = create_access_token(data={"sub": user.id})
    return Token(access_token=access_token, token_type="bearer")


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return to_user_response(current_user)
