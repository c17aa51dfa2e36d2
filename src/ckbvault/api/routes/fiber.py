"""Fiber node endpoints: peers, channels, invoices and payments."""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from ckbvault.api.deps import get_fiber_service, require_auth
from ckbvault.fiber.service import DEFAULT_CLOSE_FEE_RATE, FiberService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/fiber", tags=["Fiber"])

Amount = Union[int, float, str]


class ConnectRequest(BaseModel):
    address: Optional[str] = None
    save: bool = True


class OpenChannelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    peer_id: Optional[str] = Field(default=None, alias="peerId")
    funding_amount: Optional[Amount] = Field(default=None, alias="fundingAmount")
    is_public: bool = Field(default=True, alias="isPublic")


class CloseChannelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    channel_id: Optional[str] = Field(default=None, alias="channelId")
    close_script: Optional[dict] = Field(default=None, alias="closeScript")
    force: bool = False
    fee_rate: int = Field(default=DEFAULT_CLOSE_FEE_RATE, alias="feeRate")


class InvoiceTransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invoice: Optional[str] = None
    amount: Optional[Amount] = Field(default=None, alias="amountInCKB")
    channel_id: Optional[str] = Field(default=None, alias="channelId")


@router.post("/connect", dependencies=[Depends(require_auth)])
async def connect_peer(request: ConnectRequest, service: FiberService = Depends(get_fiber_service)):
    await service.connect(request.address, request.save)
    return {"message": "Successfully connected to peer"}


@router.post("/channel", dependencies=[Depends(require_auth)])
async def open_channel(
    request: OpenChannelRequest, service: FiberService = Depends(get_fiber_service)
):
    channel_id = await service.open_channel(
        request.funding_amount, peer_id=request.peer_id, public=request.is_public
    )
    return {"message": "Channel creation request sent", "channelId": channel_id}


@router.get("/channels", dependencies=[Depends(require_auth)])
async def list_channels(
    peer_id: Optional[str] = Query(default=None, alias="peerId"),
    include_closed: bool = Query(default=False, alias="includeClosed"),
    service: FiberService = Depends(get_fiber_service),
):
    return {"channels": await service.list_channels(peer_id, include_closed)}


@router.post("/channel/close", dependencies=[Depends(require_auth)])
async def close_channel(
    request: CloseChannelRequest, service: FiberService = Depends(get_fiber_service)
):
    channel_id = await service.close_channel(
        channel_id=request.channel_id,
        close_script=request.close_script,
        force=request.force,
        fee_rate=request.fee_rate,
    )
    return {"message": "Channel close request sent", "channelId": channel_id}


@router.post("/transfer", dependencies=[Depends(require_auth)])
async def pay_invoice(
    request: InvoiceTransferRequest, service: FiberService = Depends(get_fiber_service)
):
    """Pay an invoice over the network and wait for the result."""
    payment = await service.pay_invoice(request.invoice, request.amount)
    return {"message": "Transfer created", "payment": payment}


@router.post("/transfer/tlc", dependencies=[Depends(require_auth)])
async def transfer_by_tlc(
    request: InvoiceTransferRequest, service: FiberService = Depends(get_fiber_service)
):
    """Pay an invoice by adding a TLC on one of our channels."""
    tlc_id = await service.transfer_by_invoice(
        request.invoice, request.amount, channel_id=request.channel_id
    )
    return {"message": "TLC added", "tlcId": tlc_id}


@router.get("/invoice")
async def parse_invoice(
    invoice: Optional[str] = Query(default=None),
    service: FiberService = Depends(get_fiber_service),
):
    return {"invoice": await service.parse_invoice(invoice)}
