"""SPL Token, Associated Token Account and Token Metadata instruction builders.

Instruction data follows the on-chain program layouts (little-endian):
- TransferChecked:  [12][amount u64][decimals u8]
- MintTo:           [7][amount u64]
- InitializeMint2:  [20][decimals u8][mint_authority 32B][option u8][freeze_authority 32B]
- SetAuthority:     [6][authority_type u8][option u8]
- ATA CreateIdempotent: [1]

Token Metadata CreateMetadataAccountV3 is borsh encoded:
    [33][name str][symbol str][uri str][seller_fee_bps u16]
    [creators option<vec<(pubkey, verified u8, share u8)>>][collection none][uses none]
    [is_mutable u8][collection_details none]
where a str is a u32 byte length followed by UTF-8 bytes.
"""

import struct
from typing import Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import CreateAccountParams, create_account
from solders.sysvar import RENT

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string(
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
)
TOKEN_METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")

MINT_ACCOUNT_SIZE = 82

# Token program instruction tags
_SET_AUTHORITY = 6
_MINT_TO = 7
_TRANSFER_CHECKED = 12
_INITIALIZE_MINT2 = 20

# Authority types
AUTHORITY_MINT_TOKENS = 0

# ATA program instruction tags
_ATA_CREATE_IDEMPOTENT = 1

# Token Metadata program instruction tags
_CREATE_METADATA_ACCOUNT_V3 = 33


def get_associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """Derive the associated token account for (owner, mint).

    Deterministic: the same pair always yields the same address.
    """
    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def create_associated_token_account_idempotent(
    payer: Pubkey, owner: Pubkey, mint: Pubkey
) -> Instruction:
    """Create the owner's token account unless it already exists."""
    ata = get_associated_token_address(owner, mint)
    return Instruction(
        ASSOCIATED_TOKEN_PROGRAM_ID,
        bytes([_ATA_CREATE_IDEMPOTENT]),
        [
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(ata, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=False, is_writable=False),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
    )


def transfer_checked(
    source: Pubkey,
    mint: Pubkey,
    destination: Pubkey,
    owner: Pubkey,
    amount: int,
    decimals: int,
) -> Instruction:
    """Checked token transfer.

    The program rejects the instruction when ``decimals`` disagrees with
    the mint, so a client-side scaling error cannot move the wrong amount.
    """
    return Instruction(
        TOKEN_PROGRAM_ID,
        struct.pack("<BQB", _TRANSFER_CHECKED, amount, decimals),
        [
            AccountMeta(source, is_signer=False, is_writable=True),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(destination, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=True, is_writable=False),
        ],
    )


def initialize_mint2(
    mint: Pubkey,
    decimals: int,
    mint_authority: Pubkey,
    freeze_authority: Optional[Pubkey] = None,
) -> Instruction:
    data = struct.pack("<BB", _INITIALIZE_MINT2, decimals) + bytes(mint_authority)
    if freeze_authority is None:
        data += b"\x00" + bytes(32)
    else:
        data += b"\x01" + bytes(freeze_authority)
    return Instruction(
        TOKEN_PROGRAM_ID,
        data,
        [AccountMeta(mint, is_signer=False, is_writable=True)],
    )


def mint_to(mint: Pubkey, destination: Pubkey, authority: Pubkey, amount: int) -> Instruction:
    return Instruction(
        TOKEN_PROGRAM_ID,
        struct.pack("<BQ", _MINT_TO, amount),
        [
            AccountMeta(mint, is_signer=False, is_writable=True),
            AccountMeta(destination, is_signer=False, is_writable=True),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ],
    )


def revoke_mint_authority(mint: Pubkey, current_authority: Pubkey) -> Instruction:
    """Set the mint authority to None, fixing supply."""
    return Instruction(
        TOKEN_PROGRAM_ID,
        struct.pack("<BBB", _SET_AUTHORITY, AUTHORITY_MINT_TOKENS, 0),
        [
            AccountMeta(mint, is_signer=False, is_writable=True),
            AccountMeta(current_authority, is_signer=True, is_writable=False),
        ],
    )


def create_mint_account(payer: Pubkey, mint: Pubkey, lamports: int) -> Instruction:
    return create_account(
        CreateAccountParams(
            from_pubkey=payer,
            to_pubkey=mint,
            lamports=lamports,
            space=MINT_ACCOUNT_SIZE,
            owner=TOKEN_PROGRAM_ID,
        )
    )


def get_metadata_address(mint: Pubkey) -> Pubkey:
    """Derive the Token Metadata account of a mint."""
    address, _bump = Pubkey.find_program_address(
        [b"metadata", bytes(TOKEN_METADATA_PROGRAM_ID), bytes(mint)],
        TOKEN_METADATA_PROGRAM_ID,
    )
    return address


def _borsh_str(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


def create_metadata_account_v3(
    mint: Pubkey,
    mint_authority: Pubkey,
    payer: Pubkey,
    update_authority: Pubkey,
    name: str,
    symbol: str,
    uri: str,
    creator: Optional[Pubkey] = None,
    seller_fee_basis_points: int = 0,
    is_mutable: bool = True,
) -> Instruction:
    """Attach name, symbol and uri to a mint.

    The mint authority must still be set, so this goes before any revoke.
    A ``creator`` is recorded as verified with a 100% share and must sign.
    """
    data = bytes([_CREATE_METADATA_ACCOUNT_V3])
    data += _borsh_str(name) + _borsh_str(symbol) + _borsh_str(uri)
    data += struct.pack("<H", seller_fee_basis_points)
    if creator is None:
        data += b"\x00"
    else:
        data += b"\x01" + struct.pack("<I", 1) + bytes(creator) + struct.pack("<BB", 1, 100)
    # collection, uses
    data += b"\x00\x00"
    data += struct.pack("<B", int(is_mutable))
    # collection_details
    data += b"\x00"

    return Instruction(
        TOKEN_METADATA_PROGRAM_ID,
        data,
        [
            AccountMeta(get_metadata_address(mint), is_signer=False, is_writable=True),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(mint_authority, is_signer=True, is_writable=False),
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(update_authority, is_signer=True, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(RENT, is_signer=False, is_writable=False),
        ],
    )
