from .codec import (
    dns_encode,
    dns_decode,
    namehash,
    decode_resolve_call,
    encode_stuffed_resolve_call,
    encode_addr_call,
    decode_address_result,
)
from .schemas import (
    ResolveCall,
    SignedAnswer,
    OffchainLookupRequest,
    MetaTxAuthorization,
    RelayResult,
)
from .signer import ResponseSigner, make_signature_hash, recover_answer_signer
from .signatures import (
    sign_meta_transaction,
    recover_meta_tx_signer,
    sign_registration,
    recover_registration_signer,
)
from .nonces import RelayerNonceState, NonceLease
from .resolver import CrossChainQueryResolver
from .relayer import MetaTxRelayer, classify_revert, error_text, is_nonce_conflict, revert_selector
from .registrar import NameRegistrar, validate_label, label_from_name

__all__ = [
    "dns_encode",
    "dns_decode",
    "namehash",
    "decode_resolve_call",
    "encode_stuffed_resolve_call",
    "encode_addr_call",
    "decode_address_result",
    "ResolveCall",
    "SignedAnswer",
    "OffchainLookupRequest",
    "MetaTxAuthorization",
    "RelayResult",
    "ResponseSigner",
    "make_signature_hash",
    "recover_answer_signer",
    "sign_meta_transaction",
    "recover_meta_tx_signer",
    "sign_registration",
    "recover_registration_signer",
    "RelayerNonceState",
    "NonceLease",
    "CrossChainQueryResolver",
    "MetaTxRelayer",
    "classify_revert",
    "revert_selector",
    "is_nonce_conflict",
    "error_text",
    "NameRegistrar",
    "validate_label",
    "label_from_name",
]
