from fastapi import APIRouter, Depends, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer, OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from volaticus.api.deps import get_current_user, get_db
from volaticus.core.exceptions import Unauthorized
from volaticus.schemas.user import Token, User, UserCreate
from volaticus.services.user_service import (
    authenticate_user,
    create_access_token,
    delete_user,
    invalidate_token,
    register_user,
)

router = APIRouter()
security = HTTPBearer()


@router.post("/register", response_model=User, status_code=status.HTTP_201_CREATED)
def register(user: UserCreate, db: Session = Depends(get_db)):
    """
    Register a new user.

    Creates a new user with the provided email, username, and password.
    """
    return register_user(db, user.email, user.username, user.password)


@router.post("/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """
    Login with username/email and password.

    Returns a JWT access token for use in authenticating subsequent requests.
    """
    user = authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise Unauthorized("Incorrect username or password")

    access_token = create_access_token(data={"sub": str(user.id)})
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/logout", status_code=status.HTTP_200_OK)
def logout(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """
    Logout by invalidating the current access token.
    """
    invalidate_token(credentials.credentials)
    return {"message": "Successfully logged out"}


@router.get("/me", response_model=User)
def read_users_me(current_user=Depends(get_current_user)):
    return current_user


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
def delete_me(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    """
    Delete the current account.

    Uploaded files outlive the account until they expire; short URLs and
    API tokens are removed with it.
    """
    delete_user(db, current_user)
