# services/api/routers/accounts.py
from __future__ import annotations

from typing import Annotated, Any, Dict, List

from fastapi import APIRouter, Depends, status

from core.account_store import AccountStore
from core.errors import ValidationError
from dependencies import get_account_store, require_admin
from schemas.account import AccountCreate, AccountOut, AccountUpdate

# Every account endpoint is admin-only
router = APIRouter(
    prefix="/api/settings",
    tags=["settings"],
    dependencies=[Depends(require_admin)],
)

Store = Annotated[AccountStore, Depends(get_account_store)]


@router.get("/list", response_model=List[AccountOut], status_code=status.HTTP_200_OK)
async def list_accounts(store: Store):
    """All registered accounts; refresh tokens and client secrets are never included."""
    return store.list_accounts()


@router.get("/get/{account_id}", response_model=AccountOut)
async def get_account(account_id: str, store: Store):
    return store.get_account(account_id)


@router.post("/add")
async def add_account(payload: AccountCreate, store: Store) -> Dict[str, Any]:
    """
    Register a Drive account.

    Expects:
    {
      "id": "work",
      "name": "Work Drive",
      "refresh_token": "...",
      "client_id": "...",        (optional)
      "client_secret": "..."     (optional)
    }
    """
    account = store.add_account(payload.model_dump())
    return {"message": f"Account '{account['name']}' added.", "account": AccountOut(**account).model_dump()}


@router.put("/update/{account_id}")
async def update_account(account_id: str, payload: AccountUpdate, store: Store) -> Dict[str, Any]:
    """Merge-update; only fields present in the body are changed."""
    account = store.update_account(account_id, payload.model_dump(exclude_unset=True))
    return {"message": f"Account '{account['name']}' updated.", "account": AccountOut(**account).model_dump()}


@router.delete("/delete/{account_id}")
async def delete_account(account_id: str, store: Store) -> Dict[str, Any]:
    store.delete_account(account_id)
    return {"message": "Account deleted."}


@router.api_route("/get", methods=["GET"], include_in_schema=False)
@router.api_route("/update", methods=["PUT"], include_in_schema=False)
@router.api_route("/delete", methods=["DELETE"], include_in_schema=False)
async def missing_account_id():
    raise ValidationError("Missing account ID")
