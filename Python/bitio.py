import sys
from io import SEEK_SET
from typing import BinaryIO, Optional

PACIFIER_COUNT = 2047


class BitFileError(Exception):
    pass


class BitFile:
    """Bit-granular reader/writer over a binary stream, most significant bit first."""

    def __init__(self, stream: BinaryIO, input_mode: bool, pacifier: bool = True):
        self.is_input = input_mode
        self.file_stream: BinaryIO = stream
        self.rack: int = 0
        self.mask: int = 0x80
        self.pacifier = pacifier
        self.pacifier_counter: int = 0
        self.exhausted = False

    @staticmethod
    def open_output_bit_file(name: str) -> 'BitFile':
        try:
            return BitFile(open(name, "wb"), False)
        except OSError as e:
            raise BitFileError(f"Fatal error in OpenBitFile! {e}") from e

    @staticmethod
    def open_input_bit_file(name: str) -> 'BitFile':
        """A missing input file raises FileNotFoundError, other failures BitFileError."""
        try:
            return BitFile(open(name, "rb"), True)
        except FileNotFoundError:
            raise
        except OSError as e:
            raise BitFileError(f"Fatal error in OpenBitFile! {e}") from e

    @staticmethod
    def from_stream(stream: BinaryIO, input_mode: bool, pacifier: bool = False) -> 'BitFile':
        return BitFile(stream, input_mode, pacifier)

    def _tick(self):
        self.pacifier_counter += 1
        if self.pacifier and (self.pacifier_counter & PACIFIER_COUNT) == 0:
            sys.stdout.write(".")
            sys.stdout.flush()

    def _write_rack(self, where: str):
        try:
            self.file_stream.write(bytes([self.rack]))
        except OSError as e:
            raise BitFileError(f"Fatal error in {where}! {e}") from e
        self._tick()
        self.rack = 0
        self.mask = 0x80

    def _read_rack(self) -> bool:
        if self.exhausted:
            return False
        try:
            read = self.file_stream.read(1)
        except OSError as e:
            raise BitFileError(f"Fatal error in InputBit! {e}") from e
        if not read:
            self.exhausted = True
            return False
        self.rack = read[0]
        self._tick()
        return True

    def flush_bits(self):
        """Write out a partially filled byte, padding the low bits with zeros."""
        if not self.is_input and self.mask != 0x80:
            self._write_rack("CloseBitFile")
        try:
            self.file_stream.flush()
        except OSError as e:
            raise BitFileError(f"Fatal error in CloseBitFile! {e}") from e

    def close_bit_file(self):
        self.flush_bits()
        self.file_stream.close()

    def rewind(self):
        try:
            self.file_stream.seek(0, SEEK_SET)
        except OSError as e:
            raise BitFileError(f"Fatal error in Rewind! {e}") from e
        self.rack = 0
        self.mask = 0x80
        self.exhausted = False

    def output_bit(self, bit: int):
        if bit != 0:
            self.rack |= self.mask
        self.mask >>= 1
        if self.mask == 0:
            self._write_rack("OutputBit")

    def output_bits(self, code: int, count: int):
        if count <= 0:
            return
        mask_code: int = 1 << (count - 1)
        while mask_code != 0:
            if (mask_code & code) != 0:
                self.rack |= self.mask
            self.mask >>= 1
            if self.mask == 0:
                self._write_rack("OutputBits")
            mask_code >>= 1

    def input_bit(self) -> Optional[int]:
        """Return the next bit, or None once the stream is exhausted."""
        if self.mask == 0x80 and not self._read_rack():
            return None
        value = self.rack & self.mask
        self.mask >>= 1
        if self.mask == 0:
            self.mask = 0x80
        return 1 if value != 0 else 0

    def input_bits(self, bit_count: int) -> Optional[int]:
        """
        Read bit_count bits as an unsigned value, first bit most significant.
        Returns None if the stream runs out before bit_count bits are read.
        """
        if bit_count <= 0:
            return 0
        mask_code: int = 1 << (bit_count - 1)
        return_value: int = 0
        while mask_code != 0:
            if self.mask == 0x80 and not self._read_rack():
                return None
            if (self.rack & self.mask) != 0:
                return_value |= mask_code
            mask_code >>= 1
            self.mask >>= 1
            if self.mask == 0:
                self.mask = 0x80
        return return_value
