"""Exception hierarchy for the codec and the validators."""


class ComplianceError(Exception):
    """Base class for every error raised by this package."""
    pass


class DecodeError(ComplianceError):
    """Raised when a request body cannot be turned into a wire message."""
    pass


class CompressionError(DecodeError):
    """Raised when the body is not valid snappy block-format data."""
    pass


class MalformedMessage(DecodeError):
    """Raised when decompressed bytes are not a valid protobuf message."""
    pass


class ReferentialError(ComplianceError):
    """Raised when a symbol reference cannot be resolved."""
    pass


class IndexOutOfRange(ReferentialError):
    """Raised when a single symbol index is past the end of the table."""

    def __init__(self, index: int, size: int):
        self.index = index
        self.size = size
        super().__init__(f"symbol index {index} out of range (table size {size})")


class OddLength(ReferentialError):
    """Raised when a label reference list does not hold whole pairs."""

    def __init__(self, length: int):
        self.length = length
        super().__init__(f"label reference list has odd length {length}")


class InvalidReference(ReferentialError):
    """Raised when an element of a label reference list is out of range."""

    def __init__(self, position: int, ref: int, size: int):
        self.position = position
        self.ref = ref
        self.size = size
        super().__init__(
            f"labels_refs[{position}] = {ref} points outside symbol table (size {size})"
        )


class ProtocolViolation(ComplianceError):
    """A decoded request breaks a protocol rule (unsorted labels, mixed payloads, ...)."""
    pass


class ValidationFailed(ComplianceError):
    """Raised on request when a validation report holds MUST-level failures."""

    def __init__(self, failures: list):
        self.failures = failures
        lines = "\n".join(f"  - {f.name}: {f.message}" for f in failures)
        super().__init__(f"{len(failures)} MUST-level check(s) failed:\n{lines}")
