"""
Transaction Classifier

Pure, I/O-free classification of a transaction's calldata into one of:

- ``NativeTransfer``: empty calldata with value sent to a contract, read as an
  implicit purchase of the token at ``to``
- ``KnownSelector``: a recognised swap function, with the destination token
  pulled out of the calldata by position
- ``Unrecognized``: anything else

Token extraction walks ABI head offsets where the layout is known and falls
back to the trailing 20 bytes of the payload. It is a heuristic, not a full
ABI decoder, and can mis-extract for unusual encodings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from ..chain_types import ZERO_ADDRESS

WORD = 32
MAX_V2_PATH_LENGTH = 16


@dataclass(frozen=True)
class Unrecognized:
    is_buy: bool = False
    token_address: Optional[str] = None


@dataclass(frozen=True)
class NativeTransfer:
    to: str

    @property
    def is_buy(self) -> bool:
        return True

    @property
    def token_address(self) -> str:
        return self.to


@dataclass(frozen=True)
class KnownSelector:
    selector: str
    token_address: Optional[str]
    is_buy: bool
    method: str = "unknown"


Classification = Union[Unrecognized, NativeTransfer, KnownSelector]


# ---------------------------------------------------------------------------
# Calldata readers
# ---------------------------------------------------------------------------


def _read_word(payload: bytes, offset: int) -> Optional[int]:
    if offset < 0 or offset + WORD > len(payload):
        return None
    return int.from_bytes(payload[offset:offset + WORD], "big")


def _address_from_word(payload: bytes, offset: int) -> Optional[str]:
    if offset < 0 or offset + WORD > len(payload):
        return None
    return "0x" + payload[offset + 12:offset + WORD].hex()


def _trailing_address(payload: bytes) -> Optional[str]:
    if len(payload) < 20:
        return None
    return "0x" + payload[-20:].hex()


def _v2_path_token(path_index: int) -> Callable[[bytes], Optional[str]]:
    """Last element of the ``address[] path`` argument at head slot ``path_index``."""

    def extract(payload: bytes) -> Optional[str]:
        path_offset = _read_word(payload, path_index * WORD)
        if path_offset is None:
            return None
        length = _read_word(payload, path_offset)
        if not length or length > MAX_V2_PATH_LENGTH:
            return None
        return _address_from_word(payload, path_offset + WORD * length)

    return extract


def _v3_single_token(payload: bytes) -> Optional[str]:
    # Static params tuple: (tokenIn, tokenOut, ...)
    return _address_from_word(payload, WORD)


def _v3_path_token(payload: bytes) -> Optional[str]:
    # exactInput((bytes path, ...)): tuple offset -> bytes offset -> packed path
    tuple_offset = _read_word(payload, 0)
    if tuple_offset is None:
        return None
    relative = _read_word(payload, tuple_offset)
    if relative is None:
        return None
    bytes_offset = tuple_offset + relative
    length = _read_word(payload, bytes_offset)
    if length is None or length < 20:
        return None
    end = bytes_offset + WORD + length
    if end > len(payload):
        return None
    return "0x" + payload[end - 20:end].hex()


@dataclass(frozen=True)
class _SwapSelector:
    method: str
    native_in: bool
    extract: Callable[[bytes], Optional[str]]


KNOWN_SWAP_SELECTORS: Dict[str, _SwapSelector] = {
    # Uniswap V2 router, native in
    "0x7ff36ab5": _SwapSelector(
        "swapExactETHForTokens(uint256,address[],address,uint256)", True, _v2_path_token(1)
    ),
    "0xb6f9de95": _SwapSelector(
        "swapExactETHForTokensSupportingFeeOnTransferTokens(uint256,address[],address,uint256)",
        True,
        _v2_path_token(1),
    ),
    "0xfb3bdb41": _SwapSelector(
        "swapETHForExactTokens(uint256,address[],address,uint256)", True, _v2_path_token(1)
    ),
    # Uniswap V2 router, token in
    "0x38ed1739": _SwapSelector(
        "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)", False, _v2_path_token(2)
    ),
    "0x8803dbee": _SwapSelector(
        "swapTokensForExactTokens(uint256,uint256,address[],address,uint256)", False, _v2_path_token(2)
    ),
    "0x5c11d795": _SwapSelector(
        "swapExactTokensForTokensSupportingFeeOnTransferTokens(uint256,uint256,address[],address,uint256)",
        False,
        _v2_path_token(2),
    ),
    "0x18cbafe5": _SwapSelector(
        "swapExactTokensForETH(uint256,uint256,address[],address,uint256)", False, _v2_path_token(2)
    ),
    "0x4a25d94a": _SwapSelector(
        "swapTokensForExactETH(uint256,uint256,address[],address,uint256)", False, _v2_path_token(2)
    ),
    "0x791ac947": _SwapSelector(
        "swapExactTokensForETHSupportingFeeOnTransferTokens(uint256,uint256,address[],address,uint256)",
        False,
        _v2_path_token(2),
    ),
    # Uniswap V3 routers
    "0x414bf389": _SwapSelector(
        "exactInputSingle((address,address,uint24,address,uint256,uint256,uint256,uint160))",
        False,
        _v3_single_token,
    ),
    "0x04e45aaf": _SwapSelector(
        "exactInputSingle((address,address,uint24,address,uint256,uint256,uint160))",
        False,
        _v3_single_token,
    ),
    "0xc04b8d59": _SwapSelector(
        "exactInput((bytes,address,uint256,uint256,uint256))", False, _v3_path_token
    ),
    "0xb858183f": _SwapSelector(
        "exactInput((bytes,address,uint256,uint256))", False, _v3_path_token
    ),
    # Universal Router; commands are not decoded
    "0x3593564c": _SwapSelector("execute(bytes,bytes[],uint256)", False, _trailing_address),
    "0x24856bc3": _SwapSelector("execute(bytes,bytes[])", False, _trailing_address),
}

FUNCTION_SIGNATURES: Dict[str, str] = {
    "0xa9059cbb": "transfer(address,uint256)",
    "0x23b872dd": "transferFrom(address,address,uint256)",
    "0x095ea7b3": "approve(address,uint256)",
    **{selector: entry.method for selector, entry in KNOWN_SWAP_SELECTORS.items()},
}


def _normalize_calldata(data: Optional[str]) -> str:
    if not data:
        return "0x"
    text = data.strip().lower()
    if not text.startswith("0x"):
        text = "0x" + text
    return text


def _clean_token(address: Optional[str]) -> Optional[str]:
    if not address or address == ZERO_ADDRESS:
        return None
    return address.lower()


def describe_selector(data: Optional[str]) -> str:
    """Human-readable function signature for logs, or ``unknown``."""
    calldata = _normalize_calldata(data)
    return FUNCTION_SIGNATURES.get(calldata[:10], "unknown")


def classify_transaction(
    data: Optional[str],
    value: int,
    to: Optional[str],
) -> Classification:
    """Classify a transaction from its calldata, value (wei) and recipient."""
    calldata = _normalize_calldata(data)

    if calldata == "0x":
        if value > 0 and to:
            return NativeTransfer(to=to.lower())
        return Unrecognized()

    selector = calldata[:10]
    entry = KNOWN_SWAP_SELECTORS.get(selector)
    if entry is None:
        return Unrecognized()

    try:
        payload = bytes.fromhex(calldata[10:])
    except ValueError:
        payload = b""

    token = entry.extract(payload) or _trailing_address(payload)
    return KnownSelector(
        selector=selector,
        token_address=_clean_token(token),
        is_buy=entry.native_in,
        method=entry.method,
    )


__all__ = [
    "Unrecognized",
    "NativeTransfer",
    "KnownSelector",
    "Classification",
    "KNOWN_SWAP_SELECTORS",
    "FUNCTION_SIGNATURES",
    "classify_transaction",
    "describe_selector",
]
