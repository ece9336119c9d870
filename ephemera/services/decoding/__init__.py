from ._decoders import Base64StreamDecoder, QuotedPrintableStreamDecoder
from ._pipe import BytePipe, PipeReader
from .main import DecodedStream, DecodingConfig, DecodingGateway

__all__ = [
    "Base64StreamDecoder",
    "BytePipe",
    "DecodedStream",
    "DecodingConfig",
    "DecodingGateway",
    "PipeReader",
    "QuotedPrintableStreamDecoder",
]
