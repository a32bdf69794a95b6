"""
MD2 Errors - exception hierarchy shared by the parser, the player and the archive.

    MD2Error
    ├── MD2LoadError          load failed, no model was built
    │   ├── MD2StreamError    missing/unreadable stream, short read
    │   └── MD2FormatError    bad magic, counts, offsets
    │       └── MD2IndexError triangle points outside its arrays
    ├── PreconditionError     caller passed a bad index/name/dt
    └── PakError              archive could not be opened
"""


class MD2Error(Exception):
    pass


class MD2LoadError(MD2Error):
    pass


class MD2StreamError(MD2LoadError):
    pass


class MD2FormatError(MD2LoadError):
    pass


class MD2IndexError(MD2FormatError):
    pass


class PreconditionError(MD2Error):
    """Raised on a caller-contract violation (a bug in the caller, not in the file)."""


class PakError(MD2Error):
    pass
