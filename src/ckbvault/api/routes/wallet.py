"""Managed wallet endpoints: transfers, balances, address and synced history."""

import logging
from typing import Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from ckbvault.api.deps import get_sync_monitor, get_transfer_service, require_auth
from ckbvault.services.sync_monitor import SyncMonitor
from ckbvault.services.transfer import TransferService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Wallet"])


class TransferRequest(BaseModel):
    """Transfer request; amountInCKB is whole display units of the asset."""

    model_config = ConfigDict(populate_by_name=True)

    to_address: str = Field(alias="toAddress")
    amount: Union[str, int] = Field(alias="amountInCKB")
    ignore_limit: bool = Field(default=False, alias="ignoreLimit")


@router.post("/transfer", dependencies=[Depends(require_auth)])
async def transfer(
    request: TransferRequest,
    service: TransferService = Depends(get_transfer_service),
):
    """Send CKB from the managed wallet."""
    tx_hash = await service.transfer_native(
        request.to_address, request.amount, ignore_limit=request.ignore_limit
    )
    return {"txHash": tx_hash}


@router.post("/transfer/{xudt_args}", dependencies=[Depends(require_auth)])
async def transfer_token(
    xudt_args: str,
    request: TransferRequest,
    service: TransferService = Depends(get_transfer_service),
):
    """Send an xUDT token from the managed wallet."""
    tx_hash = await service.transfer_token(
        xudt_args, request.to_address, request.amount, ignore_limit=request.ignore_limit
    )
    return {"txHash": tx_hash}


@router.get("/balance")
async def balance(service: TransferService = Depends(get_transfer_service)):
    return {"balance": await service.balance()}


@router.get("/balance/{xudt_args}")
async def token_balance(xudt_args: str, service: TransferService = Depends(get_transfer_service)):
    return {"balance": await service.token_balance(xudt_args)}


@router.get("/address")
async def address(service: TransferService = Depends(get_transfer_service)):
    return {"address": service.address()}


@router.get("/transactions")
async def transactions(
    limit: int = Query(default=20, ge=1, le=1000),
    monitor: SyncMonitor = Depends(get_sync_monitor),
):
    """Latest received transactions recorded by the chain sync."""
    return {"transactions": await monitor.recent_transactions(limit)}
