class CellasmError(Exception):
    """Base exception for the codec."""

    pass


class CellError(CellasmError):
    """Raised when a cell, cursor or builder is misused."""

    pass


class CellUnderflow(CellError):
    """Raised when a cursor is read past its end."""

    pass


class CellOverflow(CellError):
    """Raised when a write would exceed cell capacity."""

    pass


class BocError(CellasmError):
    """Raised when a binary container is malformed."""

    pass


class DecodeError(CellasmError):
    """Raised when bytecode cannot be disassembled."""

    pass


class DictionaryResolutionError(CellasmError):
    """Raised when a jump-table dictionary cannot be mapped onto its cells."""

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        super().__init__(f"{reason}: {detail}" if detail else reason)


class PackError(CellasmError):
    """Raised when a command does not fit even into an empty cell."""

    pass


class AssemblyError(CellasmError):
    """Raised when assembler source cannot be translated."""

    def __init__(self, message: str, line: int | None = None):
        self.line = line
        super().__init__(f"line {line}: {message}" if line is not None else message)
