from .evm import (
    CrossChainQueryResolver,
    MetaTxRelayer,
    NameRegistrar,
    ResponseSigner,
    MetaTxAuthorization,
    RelayResult,
    ResolveCall,
    SignedAnswer,
)

__all__ = [
    "CrossChainQueryResolver",
    "MetaTxRelayer",
    "NameRegistrar",
    "ResponseSigner",
    "MetaTxAuthorization",
    "RelayResult",
    "ResolveCall",
    "SignedAnswer",
]
