from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from volaticus.api.deps import get_current_user, get_db, parse_uuid
from volaticus.core.config import settings
from volaticus.schemas.token import APIToken, APITokenCreate, APITokenIssued
from volaticus.services.token_service import delete_token, issue_token, list_tokens, revoke_token

router = APIRouter()


@router.post("", response_model=APITokenIssued, status_code=status.HTTP_201_CREATED)
def create_token(
    token: APITokenCreate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """
    Issue an API token for programmatic uploads.

    The token value is only returned by this call.
    """
    return issue_token(db, current_user.id, token.name, settings.SECRET_KEY, token.expires_at)


@router.get("", response_model=List[APIToken])
def read_tokens(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return list_tokens(db, current_user.id)


@router.post("/{token_id}/revoke", status_code=status.HTTP_204_NO_CONTENT)
def revoke(token_id: str, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    revoke_token(db, current_user.id, parse_uuid(token_id))


@router.delete("/{token_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete(token_id: str, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    delete_token(db, current_user.id, parse_uuid(token_id))
