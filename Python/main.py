import os
import sys
import time
import tracemalloc
from typing import List

import psutil

from bitio import BitFile, BitFileError
from grin import COMPRESSION_NAME, USAGE, GrinError, compress_file, expand_file

_printed_header = False


def file_size(file_name: str) -> int:
    try:
        file_info = os.stat(file_name)
        return file_info.st_size
    except FileNotFoundError:
        return 0


def print_ratios(input_file_path: str, output_file_path: str):
    input_size = file_size(input_file_path)
    if input_size == 0:
        input_size = 1

    output_size = file_size(output_file_path)
    ratio = 100 - int((output_size * 100) / input_size)

    print(f"\nInput bytes:             {input_size}")
    print(f"Output bytes:            {output_size}")
    print(f"Compression ratio:       {ratio}%")


def track_performance(name, func, *args, **kwargs):
    global _printed_header

    process = psutil.Process(os.getpid())
    start_time = time.time()
    start_cpu = process.cpu_times().user
    tracemalloc.start()
    start_mem = tracemalloc.get_traced_memory()[0]

    try:
        result = func(*args, **kwargs)
        end_mem = tracemalloc.get_traced_memory()[1]
    finally:
        tracemalloc.stop()
    end_cpu = process.cpu_times().user
    end_time = time.time()

    wall_time_ms = (end_time - start_time) * 1000
    cpu_time_ms = (end_cpu - start_cpu) * 1000
    mem_used_kb = (end_mem - start_mem) / 1024

    if not _printed_header:
        print(f"{'Function':<20} {'Wall Time (ms)':>15} {'CPU Time (ms)':>15} {'Memory Used (KB)':>20}")
        _printed_header = True

    print(f"{name:<20} {wall_time_ms:15.2f} {cpu_time_ms:15.2f} {mem_used_kb:20.2f}")

    return result


def short_program_name(prog_name: str) -> str:
    short_name = prog_name
    last_slash = max(prog_name.rfind('\\'), prog_name.rfind('/'), prog_name.rfind(':'))
    if last_slash != -1:
        short_name = prog_name[last_slash + 1:]
    extension = short_name.rfind('.')
    if extension != -1:
        short_name = short_name[:extension]
    return short_name


def encode(input_name: str, output_name: str, remaining_args: List[str]):
    input_file = BitFile.open_input_bit_file(input_name)
    try:
        output = track_performance("OpenBitFile", BitFile.open_output_bit_file, output_name)
        try:
            track_performance("CompressFile", compress_file, input_file, output, remaining_args)
        finally:
            track_performance("CloseBitFile", output.close_bit_file)
    finally:
        input_file.close_bit_file()

    print(f"\nCompressing {input_name} to {output_name}")
    print(f"Using {COMPRESSION_NAME}\n")
    print_ratios(input_name, output_name)


def decode(input_name: str, output_name: str, remaining_args: List[str]):
    input_file = BitFile.open_input_bit_file(input_name)
    try:
        output = BitFile.open_output_bit_file(output_name)
        print(f"\nDecompressing {input_name} to {output_name}")
        print(f"Using {COMPRESSION_NAME}\n")
        try:
            track_performance("ExpandFile", expand_file, input_file, output, remaining_args)
        finally:
            track_performance("CloseBitFile", output.close_bit_file)
    finally:
        input_file.close_bit_file()


OPERATIONS = {
    "encode": encode,
    "decode": decode,
}


def main(arguments: List[str]):
    if len(arguments) < 4:
        print(f"\nUsage:  {short_program_name(arguments[0])} {USAGE}")
        sys.exit(0)

    operation = OPERATIONS.get(arguments[1])
    if operation is None:
        print(f"Error: '{arguments[1]}' is not a valid operation, use encode or decode.")
        sys.exit(1)

    remaining_args = arguments[4:]
    try:
        operation(arguments[2], arguments[3], remaining_args)
    except FileNotFoundError:
        print(f"Error: Input file '{arguments[2]}' not found.")
        sys.exit(1)
    except (GrinError, BitFileError) as e:
        print(f"An error occurred: {e}")
        sys.exit(1)


def run():
    main(sys.argv)


if __name__ == '__main__':
    run()
