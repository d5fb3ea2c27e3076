"""
Audio and video container validation by signature.
"""

from ..base_validator import SignatureValidator

EBML_MAGIC = b"\x1a\x45\xdf\xa3"


class MP4Validator(SignatureValidator):
    signatures = [[(4, b"ftyp")]]

    def __init__(self, format_name: str = "mp4"):
        super().__init__(format_name)


class MOVValidator(MP4Validator):
    # QuickTime files may start with any top-level atom
    signatures = [[(4, b"ftyp")], [(4, b"moov")], [(4, b"mdat")], [(4, b"wide")], [(4, b"free")]]

    def __init__(self):
        super().__init__("mov")


class AVIValidator(SignatureValidator):
    signatures = [[(0, b"RIFF"), (8, b"AVI ")]]

    def __init__(self):
        super().__init__("avi")


class MatroskaValidator(SignatureValidator):
    """Matroska and WebM share the EBML header."""
    signatures = [[(0, EBML_MAGIC)]]

    def __init__(self, format_name: str = "mkv"):
        super().__init__(format_name)


class MP3Validator(SignatureValidator):
    signatures = [[(0, b"ID3")], [(0, b"\xff\xfb")], [(0, b"\xff\xf3")], [(0, b"\xff\xf2")]]

    def __init__(self):
        super().__init__("mp3")


class WAVValidator(SignatureValidator):
    signatures = [[(0, b"RIFF"), (8, b"WAVE")]]

    def __init__(self):
        super().__init__("wav")
