"""Emergency contacts API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from raksha.core.deps import get_current_user
from raksha.core.errors import ContactLimitError, NotFoundError
from raksha.db.session import get_db
from raksha.models.user import User
from raksha.schemas.contact import ContactCreate, ContactResponse
from raksha.services.contact_service import add_contact, delete_contact, list_contacts

router = APIRouter(prefix="/contacts", tags=["contacts"])


@router.get("", response_model=list[ContactResponse])
def get_my_contacts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return list_contacts(db, current_user.id)


@router.post("", response_model=ContactResponse)
def create_contact(
    data: ContactCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Add an emergency contact (at most 5 per user)."""
    try:
        return add_contact(db, current_user.id, data)
    except ContactLimitError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_contact(
    contact_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        delete_contact(db, current_user.id, contact_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
