from .encoder import EncodedPayload, encode_content
from .escpos import EscPosBuilder, build_escpos, drawer_kick, format_left_right
from .tspl import TsplBuilder, TsplDirective, build_tspl, parse_tspl, wrap_text

__all__ = [
    "EncodedPayload",
    "EscPosBuilder",
    "TsplBuilder",
    "TsplDirective",
    "build_escpos",
    "build_tspl",
    "drawer_kick",
    "encode_content",
    "format_left_right",
    "parse_tspl",
    "wrap_text",
]
