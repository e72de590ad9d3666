import heapq
from typing import Dict, Iterator, List, Optional, Tuple

from bitio import BitFile

COMPRESSION_NAME = "static order 0 model with Huffman coding (grin container)"
USAGE = "encode|decode infile outfile [-d]\n\nSpecifying -d will dump the modeling data\n"

MAGIC_NUMBER = 1846
MAGIC_BITS = 32
END_OF_STREAM = 256
TREE_END = 257
SYMBOL_BITS = 9
SYMBOL_COUNT = END_OF_STREAM + 1
NODE_TABLE_COUNT = SYMBOL_COUNT * 2 - 1
UNUSED = -1


class GrinError(Exception):
    pass


class FormatError(GrinError):
    """The stream does not start with the grin magic number."""


class MalformedStreamError(GrinError):
    """The stream ended early or its tree section is inconsistent."""


class UsageError(GrinError):
    pass


class FrequencyTable:
    """
    Occurrence counts for the 257 symbols, kept in a fixed array indexed by
    symbol. Only symbols with a positive count are considered present, and
    the end of stream slot always is.
    """

    def __init__(self, counts: List[int]):
        if len(counts) != SYMBOL_COUNT:
            raise UsageError(f"frequency table needs {SYMBOL_COUNT} slots, got {len(counts)}")
        if counts[END_OF_STREAM] < 1:
            raise UsageError("frequency table is missing the end of stream symbol")
        self._counts: Tuple[int, ...] = tuple(counts)

    @classmethod
    def from_mapping(cls, mapping: Dict[int, int]) -> 'FrequencyTable':
        counts = [0] * SYMBOL_COUNT
        for symbol, count in mapping.items():
            if not 0 <= symbol <= END_OF_STREAM:
                raise UsageError(f"symbol {symbol} is outside the 9 bit alphabet")
            if count < 1:
                raise UsageError(f"symbol {symbol} has non-positive count {count}")
            counts[symbol] = count
        return cls(counts)

    def __getitem__(self, symbol: int) -> int:
        if symbol not in self:
            raise KeyError(symbol)
        return self._counts[symbol]

    def __contains__(self, symbol) -> bool:
        return isinstance(symbol, int) and 0 <= symbol <= END_OF_STREAM and self._counts[symbol] > 0

    def __iter__(self) -> Iterator[int]:
        return (symbol for symbol, count in enumerate(self._counts) if count > 0)

    def __len__(self) -> int:
        return sum(1 for count in self._counts if count > 0)

    def items(self) -> Iterator[Tuple[int, int]]:
        return ((symbol, self._counts[symbol]) for symbol in self)

    def total(self) -> int:
        return sum(self._counts)


def count_frequencies(input_bit_file: BitFile) -> FrequencyTable:
    counts = [0] * SYMBOL_COUNT
    while True:
        c = input_bit_file.input_bits(8)
        if c is None:
            break
        counts[c] += 1

    counts[END_OF_STREAM] = 1
    return FrequencyTable(counts)


class Node:
    __slots__ = ['count', 'child_0', 'child_1']

    def __init__(self):
        self.count = 0
        self.child_0 = UNUSED
        self.child_1 = UNUSED


class Code:
    __slots__ = ['code', 'code_bits']

    def __init__(self):
        self.code = 0
        self.code_bits = 0

    def __str__(self):
        if self.code_bits == 0:
            return ""
        return f"{self.code:0{self.code_bits}b}"


def print_char(c):
    if 0x20 <= c < 127:
        print(f"'{chr(c)}'", end="")
    else:
        print(f"{c:3d}", end="")


class HuffmanTree:
    """
    Huffman tree kept in a node arena. Indices 0-256 are the leaves for the
    symbol of the same value, internal nodes are allocated from 257 upward.
    """

    def __init__(self):
        self.nodes = [Node() for _ in range(NODE_TABLE_COUNT)]
        self.codes = [Code() for _ in range(SYMBOL_COUNT)]
        self.root = UNUSED
        self.next_free = SYMBOL_COUNT
        self.in_tree = [False] * SYMBOL_COUNT

    @staticmethod
    def is_leaf(node: int) -> bool:
        return node <= END_OF_STREAM

    def _new_internal(self, child_0: int, child_1: int, count: int) -> int:
        if self.next_free >= NODE_TABLE_COUNT:
            raise MalformedStreamError("tree has more internal nodes than the alphabet allows")
        node = self.next_free
        self.next_free += 1
        self.nodes[node].child_0 = child_0
        self.nodes[node].child_1 = child_1
        self.nodes[node].count = count
        return node

    @classmethod
    def build(cls, frequencies) -> 'HuffmanTree':
        """
        Build the tree by repeatedly merging the two lightest nodes. The first
        node popped becomes child_0, ties go to the lower node index.
        """
        if not isinstance(frequencies, FrequencyTable):
            frequencies = FrequencyTable.from_mapping(frequencies)

        tree = cls()
        heap = []
        for symbol, count in frequencies.items():
            tree.nodes[symbol].count = count
            tree.in_tree[symbol] = True
            heap.append((count, symbol))

        # A lone end of stream leaf would have an empty code, so give it a
        # zero weight sibling.
        if len(heap) == 1:
            placeholder = next(c for c in range(END_OF_STREAM) if not tree.in_tree[c])
            tree.in_tree[placeholder] = True
            heap.append((0, placeholder))

        heapq.heapify(heap)
        while len(heap) > 1:
            count_0, min_1 = heapq.heappop(heap)
            count_1, min_2 = heapq.heappop(heap)
            merged = tree._new_internal(min_1, min_2, count_0 + count_1)
            heapq.heappush(heap, (count_0 + count_1, merged))

        tree.root = heap[0][1]
        tree.build_codes()
        return tree

    def build_codes(self):
        """Regenerate the code table from the current root."""
        self.codes = [Code() for _ in range(SYMBOL_COUNT)]
        if self.root != UNUSED:
            self._convert_tree_to_code(0, 0, self.root)

    def _convert_tree_to_code(self, code_so_far: int, bits: int, node: int):
        if self.is_leaf(node):
            self.codes[node].code = code_so_far
            self.codes[node].code_bits = bits
            return

        code_so_far <<= 1
        bits += 1
        self._convert_tree_to_code(code_so_far, bits, self.nodes[node].child_0)
        self._convert_tree_to_code(code_so_far | 1, bits, self.nodes[node].child_1)

    def code_table(self) -> Dict[int, str]:
        return {symbol: str(code) for symbol, code in enumerate(self.codes) if code.code_bits > 0}

    def leaves(self) -> List[int]:
        return [symbol for symbol in range(SYMBOL_COUNT) if self.in_tree[symbol]]

    def serialize(self, output_bit_file: BitFile):
        self._output_node(output_bit_file, self.root)
        output_bit_file.output_bits(TREE_END, SYMBOL_BITS)

    def _output_node(self, output_bit_file: BitFile, node: int):
        if self.is_leaf(node):
            output_bit_file.output_bit(0)
            output_bit_file.output_bits(node, SYMBOL_BITS)
        else:
            output_bit_file.output_bit(1)
            self._output_node(output_bit_file, self.nodes[node].child_0)
            self._output_node(output_bit_file, self.nodes[node].child_1)

    @classmethod
    def read_tree(cls, input_bit_file: BitFile) -> 'HuffmanTree':
        """Rebuild a serialized tree and consume its terminator field."""
        tree = cls()
        root = tree._input_node(input_bit_file)
        if tree.is_leaf(root):
            raise MalformedStreamError(f"tree root is the leaf {root}")
        tree.root = root

        end = input_bit_file.input_bits(SYMBOL_BITS)
        if end is None:
            raise MalformedStreamError("stream ended before the tree terminator")
        if end != TREE_END:
            raise MalformedStreamError(f"bad tree terminator {end}")

        tree.build_codes()
        return tree

    def _input_node(self, input_bit_file: BitFile) -> int:
        bit = input_bit_file.input_bit()
        if bit is None:
            raise MalformedStreamError("stream ended inside the tree")

        if bit == 0:
            symbol = input_bit_file.input_bits(SYMBOL_BITS)
            if symbol is None:
                raise MalformedStreamError("stream ended inside a tree leaf")
            if symbol > END_OF_STREAM:
                raise MalformedStreamError(f"tree leaf holds invalid symbol {symbol}")
            if self.in_tree[symbol]:
                raise MalformedStreamError(f"symbol {symbol} appears twice in the tree")
            self.in_tree[symbol] = True
            return symbol

        # Reserve the slot first so a runaway stream is caught by the arena bound.
        node = self._new_internal(UNUSED, UNUSED, 0)
        self.nodes[node].child_0 = self._input_node(input_bit_file)
        self.nodes[node].child_1 = self._input_node(input_bit_file)
        return node

    def encode(self, input_bit_file: BitFile, output_bit_file: BitFile):
        """
        Write a complete container: magic number, serialized tree, the code of
        every byte of input_bit_file and the end of stream code.
        """
        if self.root == UNUSED:
            raise UsageError("encode called on an empty tree")
        if not self.in_tree[END_OF_STREAM]:
            raise UsageError("tree has no end of stream symbol")

        output_bit_file.output_bits(MAGIC_NUMBER, MAGIC_BITS)
        self.serialize(output_bit_file)
        self.build_codes()

        while True:
            c = input_bit_file.input_bits(8)
            if c is None:
                break
            code = self.codes[c]
            if code.code_bits == 0:
                raise UsageError(f"byte {c} has no code in this tree")
            output_bit_file.output_bits(code.code, code.code_bits)

        eos = self.codes[END_OF_STREAM]
        output_bit_file.output_bits(eos.code, eos.code_bits)

    def decode(self, input_bit_file: BitFile, output_bit_file: BitFile):
        if self.root == UNUSED:
            raise UsageError("decode called before a tree was read")

        while True:
            node = self.root
            while not self.is_leaf(node):
                bit = input_bit_file.input_bit()
                if bit is None:
                    raise MalformedStreamError("stream ended before the end of stream code")
                if bit:
                    node = self.nodes[node].child_1
                else:
                    node = self.nodes[node].child_0

            if node == END_OF_STREAM:
                break

            output_bit_file.output_bits(node, 8)

    def print_model(self):
        for i in range(self.next_free):
            if self.is_leaf(i) and not self.in_tree[i]:
                continue
            print("node=", end="")
            print_char(i)
            print(f"  count={self.nodes[i].count:3d}", end="")

            if self.is_leaf(i):
                print(f"  Huffman code={self.codes[i]}", end="")
            else:
                print("  child_0=", end="")
                print_char(self.nodes[i].child_0)
                print("  child_1=", end="")
                print_char(self.nodes[i].child_1)

            print()


def read_magic(input_bit_file: BitFile):
    magic = input_bit_file.input_bits(MAGIC_BITS)
    if magic != MAGIC_NUMBER:
        raise FormatError("Not a valid .grin file!")


def compress_file(input_bit_file: BitFile, output_bit_file: BitFile, argv: Optional[List[str]] = None) -> HuffmanTree:
    """Count, build and encode. input_bit_file is rewound between the two passes."""
    frequencies = count_frequencies(input_bit_file)
    tree = HuffmanTree.build(frequencies)
    input_bit_file.rewind()

    if argv and argv[0] == "-d":
        tree.print_model()

    tree.encode(input_bit_file, output_bit_file)
    return tree


def expand_file(input_bit_file: BitFile, output_bit_file: BitFile, argv: Optional[List[str]] = None) -> HuffmanTree:
    read_magic(input_bit_file)
    tree = HuffmanTree.read_tree(input_bit_file)

    if argv and argv[0] == "-d":
        tree.print_model()

    tree.decode(input_bit_file, output_bit_file)
    return tree
