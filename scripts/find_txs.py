#!/usr/bin/env python3
"""Inspect the managed wallet on chain.

Prints the managed address, its live cells and the transactions it received
over a block range, with the same records the chain sync would store.

Usage:
    python scripts/find_txs.py [--xudt 0x...] [--from-block 0] [--to-block TIP]
"""

import argparse
import asyncio
import json
import logging

from dotenv import load_dotenv

load_dotenv()

from ckbvault.ckb.node import CkbRpcNode
from ckbvault.ckb.scripts import get_network
from ckbvault.ckb.types import format_units
from ckbvault.config import get_settings
from ckbvault.services.sync_monitor import build_transaction_record, filter_received
from ckbvault.signing.factory import get_signer

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(description="Find managed wallet cells and transactions")
    parser.add_argument("--xudt", type=str, help="Only list cells of this xUDT (args)")
    parser.add_argument("--from-block", type=int, default=0, help="First block (default: 0)")
    parser.add_argument("--to-block", type=int, help="Last block (default: tip)")
    parser.add_argument("--no-cells", action="store_true", help="Skip listing live cells")

    args = parser.parse_args()

    settings = get_settings()
    network = get_network(settings.ckb_network)
    node = CkbRpcNode(settings.ckb_rpc_url, settings.indexer_url, timeout=settings.rpc_timeout_seconds)
    signer = get_signer()

    tip = await node.get_tip_block_number()
    to_block = args.to_block if args.to_block is not None else tip

    logger.info(f"Address: {signer.address}")
    logger.info(f"Tip: {tip}")

    if not args.no_cells:
        type_script = network.xudt.script(args.xudt.lower()) if args.xudt else None
        count = 0
        async for cell in node.iter_cells(signer.lock_script, type_script):
            count += 1
            line = (
                f"{cell.out_point.tx_hash}:{cell.out_point.index} "
                f"capacity={format_units(cell.capacity, 8)} CKB block={cell.block_number}"
            )
            if cell.output.type is not None:
                line += f" type_args={cell.output.type.args} amount={cell.udt_amount}"
            print(line)
        logger.info(f"{count} live cells")

    refs = await node.find_transactions(signer.lock_script, args.from_block, to_block + 1)
    received = filter_received(refs)
    logger.info(f"{len(received)} received transactions in blocks {args.from_block}..{to_block}")

    for ref in received:
        detail = await node.get_transaction_detail(ref.tx_hash)
        print(json.dumps(build_transaction_record(detail, ref.block_number, network), indent=2))


if __name__ == "__main__":
    asyncio.run(main())
