"""Transfer quotas for the managed wallet.

Two ceilings guard every outbound transfer, both kept in the shared counter
store so all process instances see the same usage:

- destination ceiling: how many transfers one address may ever receive
  (native CKB defaults to 1, tokens are unbounded unless configured)
- hourly ceiling: display units sent per UTC hour, per asset

`reserve` only reads; `commit` is called after the transaction was
broadcast. Nothing spans the two calls, so concurrent requests can both pass
`reserve` and together exceed a ceiling.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from ckbvault.config import Settings
from ckbvault.store.repository import CounterStore

logger = logging.getLogger(__name__)

NATIVE_ASSET = "ckb"

DESTINATION_LIMIT_EXCEEDED = "DESTINATION_LIMIT_EXCEEDED"
HOURLY_LIMIT_EXCEEDED = "HOURLY_LIMIT_EXCEEDED"

HOURLY_WINDOW_SECONDS = 3600


@dataclass(frozen=True)
class ReservationResult:
    """Outcome of a quota check.

    Attributes:
        accepted: Whether the transfer may proceed
        reason: DESTINATION_LIMIT_EXCEEDED or HOURLY_LIMIT_EXCEEDED when rejected
        message: Human readable explanation when rejected
    """

    accepted: bool
    reason: Optional[str] = None
    message: str = ""


ACCEPTED = ReservationResult(accepted=True)


def asset_key_for(token_args: Optional[str] = None) -> str:
    """Counter namespace of an asset: 'ckb' or the lower-case xUDT args."""
    return token_args.lower() if token_args else NATIVE_ASSET


class RateLimiter:
    """Per-destination and per-hour quota policy over the counter store."""

    def __init__(
        self,
        store: CounterStore,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.settings = settings
        self._clock = clock

    def hour_bucket(self) -> str:
        """Current UTC hour as YYYYMMDDHH."""
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).strftime("%Y%m%d%H")

    def hourly_key(self, asset_key: str) -> str:
        return f"transfer:{asset_key}:{self.hour_bucket()}"

    @staticmethod
    def destination_key(asset_key: str, destination: str) -> str:
        return f"transfer:{asset_key}:{destination}"

    def destination_limit(self, asset_key: str) -> Optional[int]:
        if asset_key == NATIVE_ASSET:
            return self.settings.ckb_destination_limit
        return self.settings.token_destination_limits.get(asset_key)

    def hourly_limit(self, asset_key: str) -> int:
        if asset_key == NATIVE_ASSET:
            return self.settings.ckb_hourly_limit
        return self.settings.token_hourly_limits.get(
            asset_key, self.settings.default_token_hourly_limit
        )

    async def reserve(
        self,
        asset_key: str,
        destination: str,
        amount: int,
        ignore_limit: bool = False,
    ) -> ReservationResult:
        """Check whether a transfer fits within both ceilings.

        Args:
            asset_key: 'ckb' or xUDT args
            destination: Canonical destination address
            amount: Transfer size in whole display units
            ignore_limit: Skip both checks

        Returns:
            ReservationResult (no state is changed)
        """
        if ignore_limit:
            logger.info(f"Transfer limits bypassed for {asset_key} -> {destination}")
            return ACCEPTED

        destination_ceiling = self.destination_limit(asset_key)
        if destination_ceiling is not None:
            count = int(await self.store.get(self.destination_key(asset_key, destination)) or 0)
            if count + 1 > destination_ceiling:
                logger.warning(
                    f"Destination limit hit for {asset_key}: {destination} "
                    f"already received {count} transfer(s)"
                )
                return ReservationResult(
                    accepted=False,
                    reason=DESTINATION_LIMIT_EXCEEDED,
                    message=(
                        f"Destination {destination} has reached its limit of "
                        f"{destination_ceiling} transfer(s)"
                    ),
                )

        hourly_ceiling = self.hourly_limit(asset_key)
        used = int(await self.store.get(self.hourly_key(asset_key)) or 0)
        if used + amount > hourly_ceiling:
            logger.warning(
                f"Hourly limit hit for {asset_key}: used {used} + {amount} > {hourly_ceiling}"
            )
            return ReservationResult(
                accepted=False,
                reason=HOURLY_LIMIT_EXCEEDED,
                message=(
                    f"Hourly limit of {hourly_ceiling} exceeded "
                    f"({used} already sent this hour, requested {amount})"
                ),
            )

        return ACCEPTED

    async def commit(self, asset_key: str, destination: str, amount: int) -> None:
        """Record a broadcast transfer against both counters."""
        hourly_key = self.hourly_key(asset_key)
        used = await self.store.incr(hourly_key, amount)
        await self.store.expire(hourly_key, HOURLY_WINDOW_SECONDS)
        count = await self.store.incr(self.destination_key(asset_key, destination))
        logger.debug(
            f"Committed {amount} {asset_key}: hour total {used}, "
            f"{destination} count {count}"
        )
