"""NFT purchase quotes: how much ETH buys ``count`` NFTs through the OTC desk."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from fractions import Fraction

from ..chain import calls
from ..chain.calls import ContractCall
from ..chain.errors import QuoteError
from ..chain.reader import ChainReader
from .model import WEI_PER_ETH, apply_buffer, apply_slippage, quote_for_target_count

logger = logging.getLogger(__name__)

QUOTE_BUFFER = Fraction(105, 100)
MIN_OUT_TOLERANCE_BP = 1_500


@dataclass(frozen=True)
class NftPurchaseQuote:
    count: int
    unwrap_fee: int
    tokens_needed: int
    eth_for_tokens: int
    total_eth: int

    def to_call(self, buffer: Fraction = QUOTE_BUFFER) -> ContractCall:
        """
        ``buyNFT`` call for this quote. Sends ``total_eth`` plus the buffer
        again (the desk refunds the excess) and accepts up to 15% fewer tokens.
        """
        min_out = apply_slippage(self.count * WEI_PER_ETH, MIN_OUT_TOLERANCE_BP)
        return calls.buy_nft(self.count, min_out, apply_buffer(self.total_eth, buffer))


class NftQuoter:
    """Quotes per NFT count, cached until ``clear()``."""

    def __init__(self, reader: ChainReader, buffer: Fraction = QUOTE_BUFFER):
        self.reader = reader
        self.buffer = buffer
        self._cache: dict[int, NftPurchaseQuote] = {}

    def clear(self) -> None:
        self._cache.clear()

    async def quote(self, count: int) -> NftPurchaseQuote:
        if count <= 0:
            raise ValueError("count must be positive")
        if count in self._cache:
            return self._cache[count]

        unwrap_fee, tokens_needed = await self.reader.quote_buy_nft(count)
        # Probe one whole token, then scale; reads are sequenced because the
        # probe needs the pool key.
        pool_key = await self.reader.get_pool_key()
        probe_in = await self.reader.quote_exact_output(pool_key, True, WEI_PER_ETH)
        if probe_in <= 0:
            raise QuoteError("Pool quoted zero ETH for one token")

        eth_for_tokens = quote_for_target_count(probe_in, WEI_PER_ETH, tokens_needed, self.buffer)
        quote = NftPurchaseQuote(
            count=count,
            unwrap_fee=unwrap_fee,
            tokens_needed=tokens_needed,
            eth_for_tokens=eth_for_tokens,
            total_eth=eth_for_tokens + unwrap_fee,
        )
        logger.debug("NFT quote x%d: %d wei", count, quote.total_eth)
        self._cache[count] = quote
        return quote
