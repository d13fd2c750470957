from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, conint


class _HexModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class Ok(_HexModel):
    status: str = Field("ok", description="Fixed OK status for successful responses.")


class TreeInfo(_HexModel):
    asset_id: int = Field(..., description="Asset id the tree belongs to.")
    root: Optional[str] = Field(None, description="Current root (0x-hex), null while the tree is empty.")
    depth: conint(ge=0) = Field(..., description="Proof depth, floored for uniform proof shape.")
    tree_depth: conint(ge=0) = Field(..., description="Actual ceil(log2(size)) depth of the tree.")
    size: conint(ge=0) = Field(..., description="Number of leaves.")


class RootInfo(_HexModel):
    root: str = Field(..., description="Queried root (0x-hex).")
    historical: bool = Field(..., description="Whether the tree ever produced this root.")
    depth: Optional[int] = Field(None, description="Tree depth when the root was produced.")
    size: Optional[int] = Field(None, description="Tree size when the root was produced.")


class ProofRes(_HexModel):
    leaf: str = Field(..., description="Leaf at index (0x-hex).")
    index: conint(ge=0) = Field(..., description="Leaf index.")
    depth: conint(ge=0) = Field(..., description="Number of siblings.")
    root: str = Field(..., description="Root the proof folds to (0x-hex).")
    siblings: List[str] = Field(..., description="Sibling per level, 0x0 where the node had none.")


class UsedRes(_HexModel):
    value: str = Field(..., description="Queried nonce commitment or leaf (0x-hex).")
    used: bool = Field(..., description="Whether the value is in the used-commitments set.")


class StateRes(_HexModel):
    nonce_commitment: str = Field(..., description="Nonce commitment keying this state (0x-hex).")
    encrypted_balance: str = Field(..., description="Balance ciphertext, or plaintext for create (0x-hex).")
    encrypted_nullifier: str = Field(..., description="Nullifier ciphertext, or plaintext for create (0x-hex).")
    plaintext: bool = Field(..., description="True when the state was stored in the clear.")
    kind: str = Field(..., description="create | add_funds | withdraw | transfer | absorb")
    statement: str = Field("", description="Public-input layout the transition used.")
    minted_shares: conint(ge=0) = Field(0, description="Shares minted by the ledger (create/add_funds).")
    lock_until: conint(ge=0) = Field(0, description="Lock timestamp set by add_funds, 0 if none.")


class DiscoveryRes(_HexModel):
    present: bool = Field(..., description="False until the first discovery entry is posted.")
    point: Optional[List[str]] = Field(None, description="Aggregate point [x, y] (0x-hex).")
    m_sum: Optional[str] = Field(None, description="Sum of message scalars (0x-hex).")
    r_sum: Optional[str] = Field(None, description="Sum of blinding scalars (0x-hex).")
    count: conint(ge=0) = Field(0, description="Number of folded entries.")


class DiscoveryEntryRes(_HexModel):
    point: List[str] = Field(..., description="commit2(1, nonce_commitment) as [x, y].")
    nonce_commitment: str = Field(..., description="Nonce commitment the entry commits to.")


class DiscoveryEntriesRes(_HexModel):
    start: conint(ge=0)
    next: conint(ge=0) = Field(..., description="Cursor to pass as start for the next page.")
    entries: List[DiscoveryEntryRes]


class NoteRes(_HexModel):
    sender_public: List[str]
    encrypted_amount: str
    commitment: List[str]


class NoteStackRes(_HexModel):
    recipient: List[str]
    point: List[str]
    leaf: str
    notes: List[NoteRes]


class HealthRes(_HexModel):
    status: str
    timestamp: str
    checks: Dict[str, Any]
