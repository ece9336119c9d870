from .main import ContentReference, ReferenceCodec, ResolvedReference, TransferEncoding

__all__ = [
    "ContentReference",
    "ReferenceCodec",
    "ResolvedReference",
    "TransferEncoding",
]
