import os
import sys
import argparse
import tempfile
import warnings
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, NamedTuple, Optional, Union

__version__ = "1.0.0"

# Buffer size for file streaming; any value gives identical output
DEFAULT_CHUNK_SIZE = 1024

# surrogateescape lets non-UTF-8 XOR output survive a str round-trip
TEXT_ENCODING = "utf-8"
TEXT_ERRORS = "surrogateescape"

# Verbose mode (disabled by default, enabled with --verbose)
VERBOSE = False

CipherKey = Union[int, bytes]
CipherFn = Callable[[bytes, int], bytes]


def set_verbose(enabled: bool):
    global VERBOSE
    VERBOSE = enabled

def log_info(msg: str):
    """Print info message only if verbose mode is enabled."""
    if VERBOSE:
        print(f"[INFO] {msg}", file=sys.stderr)

def log_warn(msg: str):
    """Print warning message only if verbose mode is enabled."""
    if VERBOSE:
        print(f"[WARN] {msg}", file=sys.stderr)

# ==========================================
#  ERRORS
# ==========================================

class CipherError(Exception):
    """Base class for every error raised by the engine."""

class InvalidKey(CipherError, ValueError):
    """XOR key is empty."""

class KeyParseError(CipherError, ValueError):
    """Raw key does not have the shape the selected method needs."""

class NotANumber(KeyParseError):
    pass

class EmptyKey(KeyParseError):
    pass

class StreamError(CipherError, OSError):
    """A source or sink could not be used."""

class SourceUnavailable(StreamError):
    pass

class SinkUnavailable(StreamError):
    pass

class UnknownMethodWarning(UserWarning):
    """Method tag was not recognised; rotation is used instead."""

# ==========================================
#  FRAMEWORK: Method Enum, Base Class & Registry
# ==========================================

class CipherMethod(Enum):
    # Values match the numbers of the original menu entries
    ROTATION = 1
    XOR = 2

    @classmethod
    def parse(cls, tag) -> Optional["CipherMethod"]:
        """
        Resolve a method tag to a member.

        Accepts a member, its integer value, a numeric string or a
        case-insensitive name/alias. Returns None for anything else.
        """
        if isinstance(tag, cls):
            return tag
        if isinstance(tag, int) and not isinstance(tag, bool):
            try:
                return cls(tag)
            except ValueError:
                return None
        if isinstance(tag, str):
            name = tag.strip().lower()
            if name.isdecimal() and name.isascii():
                return cls.parse(int(name))
            return METHOD_ALIASES.get(name)
        return None


METHOD_ALIASES = {
    "rotation": CipherMethod.ROTATION,
    "caesar": CipherMethod.ROTATION,
    "rot": CipherMethod.ROTATION,
    "xor": CipherMethod.XOR,
}

DEFAULT_METHOD = CipherMethod.ROTATION


class CipherStrategy(ABC):
    """Abstract base class that all ciphers must implement."""

    @property
    @abstractmethod
    def method(self) -> CipherMethod:
        """The method tag this cipher is registered under."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Short description for help text."""
        pass

    @property
    def name(self) -> str:
        return self.method.name.lower()

    @abstractmethod
    def apply(self, data: bytes, key: CipherKey, offset: int = 0) -> bytes:
        """
        Transform ``data`` with ``key``.

        ``offset`` is the position of ``data[0]`` in the whole stream, so a
        chunked caller gets the same bytes as a single call would produce.
        """
        pass

    @abstractmethod
    def inverse_key(self, key: CipherKey) -> CipherKey:
        """Key that undoes ``apply`` with ``key``."""
        pass

    def check_key(self, key: CipherKey):
        pass

    def bind(self, key: CipherKey) -> CipherFn:
        """Return a ``cipher_fn(chunk, offset)`` for StreamProcessor."""
        self.check_key(key)

        def cipher_fn(chunk: bytes, offset: int = 0) -> bytes:
            return self.apply(chunk, key, offset)

        return cipher_fn


CIPHER_REGISTRY = {}

def register_cipher(cls):
    """Decorator to auto-register ciphers."""
    cipher = cls()
    CIPHER_REGISTRY[cipher.method] = cipher
    return cls

# ==========================================
#  METHOD 1: Rotation (Caesar over letters and digits)
# ==========================================

@register_cipher
class RotationCipher(CipherStrategy):
    method = CipherMethod.ROTATION
    description = "Shifts A-Z/a-z modulo 26 and 0-9 modulo 10. Key is an integer."

    UPPER = b"ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    LOWER = b"abcdefghijklmnopqrstuvwxyz"
    DIGITS = b"0123456789"

    @classmethod
    @lru_cache(maxsize=None)
    def _table(cls, shift: int) -> bytes:
        # shift is pre-reduced modulo lcm(26, 10) so the cache stays small
        source = cls.UPPER + cls.LOWER + cls.DIGITS
        target = (cls._rotate(cls.UPPER, shift)
                  + cls._rotate(cls.LOWER, shift)
                  + cls._rotate(cls.DIGITS, shift))
        return bytes.maketrans(source, target)

    @staticmethod
    def _rotate(alphabet: bytes, shift: int) -> bytes:
        k = shift % len(alphabet)
        return alphabet[k:] + alphabet[:k]

    def apply(self, data: bytes, key: int, offset: int = 0) -> bytes:
        return bytes(data).translate(self._table(key % 130))

    def inverse_key(self, key: int) -> int:
        return -key

# ==========================================
#  METHOD 2: Repeating-key XOR
# ==========================================

@register_cipher
class XorCipher(CipherStrategy):
    method = CipherMethod.XOR
    description = "XORs every byte with a cycling key. Same call encrypts and decrypts."

    def check_key(self, key: bytes):
        if not key:
            raise InvalidKey("XOR key must not be empty")

    def apply(self, data: bytes, key: bytes, offset: int = 0) -> bytes:
        if isinstance(key, str):
            key = key.encode(TEXT_ENCODING)
        key = bytes(key)
        self.check_key(key)
        size = len(data)
        if not size:
            return b""

        # Rotate the key so key[0] lines up with data[0] at this stream offset
        phase = offset % len(key)
        key = key[phase:] + key[:phase]
        keystream = (key * (size // len(key) + 1))[:size]

        mixed = int.from_bytes(bytes(data), "big") ^ int.from_bytes(keystream, "big")
        return mixed.to_bytes(size, "big")

    def inverse_key(self, key: bytes) -> bytes:
        return key

# ==========================================
#  STREAMING: Chunked Application
# ==========================================

class StreamProcessor:
    """
    Applies a cipher function across a byte stream in bounded chunks.

    The running byte offset is handed to the cipher function with every
    chunk, which keeps XOR key cycling continuous across chunk boundaries.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size

    def transform(self, source: BinaryIO, sink: BinaryIO, cipher_fn: CipherFn) -> int:
        """Stream ``source`` through ``cipher_fn`` into ``sink``. Returns bytes written."""
        offset = 0
        while True:
            try:
                chunk = source.read(self.chunk_size)
            except OSError as e:
                raise SourceUnavailable(f"Could not read input: {e}") from e
            if not chunk:
                break

            transformed = cipher_fn(chunk, offset)
            try:
                sink.write(transformed)
            except OSError as e:
                raise SinkUnavailable(f"Could not write output: {e}") from e
            offset += len(chunk)
        return offset

    def transform_bytes(self, data: bytes, cipher_fn: CipherFn) -> bytes:
        """In-memory form: the whole input is a single chunk at offset 0."""
        return cipher_fn(bytes(data), 0)

# ==========================================
#  SELECTION: Method Tag + Raw Key
# ==========================================

class Selection(NamedTuple):
    method: CipherMethod
    key: CipherKey


class TransformSelector:
    """Validates a method tag and raw key into a Selection."""

    @staticmethod
    def select(method_tag, raw_key) -> Selection:
        method = CipherMethod.parse(method_tag)
        if method is None:
            log_warn(f"Unknown method {method_tag!r}. Using {DEFAULT_METHOD.name.lower()} by default.")
            warnings.warn(
                f"Unknown cipher method {method_tag!r}; falling back to "
                f"{DEFAULT_METHOD.name.lower()}",
                UnknownMethodWarning,
                stacklevel=2,
            )
            method = DEFAULT_METHOD

        if method is CipherMethod.ROTATION:
            return Selection(method, TransformSelector._parse_shift(raw_key))
        return Selection(method, TransformSelector._parse_xor_key(raw_key))

    @staticmethod
    def _parse_shift(raw_key) -> int:
        if isinstance(raw_key, int) and not isinstance(raw_key, bool):
            return raw_key
        if not isinstance(raw_key, (str, bytes, bytearray)):
            raise NotANumber(f"Shift key must be an integer, got {type(raw_key).__name__}")
        try:
            return int(raw_key)
        except ValueError:
            raise NotANumber(f"Shift key must be an integer, got {raw_key!r}") from None

    @staticmethod
    def _parse_xor_key(raw_key) -> bytes:
        if isinstance(raw_key, str):
            raw_key = raw_key.encode(TEXT_ENCODING)
        elif isinstance(raw_key, int) and not isinstance(raw_key, bool):
            # Numeric keys typed on the command line arrive as text
            raw_key = str(raw_key).encode(TEXT_ENCODING)
        elif not isinstance(raw_key, (bytes, bytearray, memoryview)):
            raise KeyParseError(f"XOR key must be text or bytes, got {type(raw_key).__name__}")
        if not raw_key:
            raise EmptyKey("XOR key must not be empty")
        return bytes(raw_key)

# ==========================================
#  ENGINE: Text and File Operations
# ==========================================

def _resolve(method, key, decrypt: bool) -> CipherFn:
    selection = TransformSelector.select(method, key)
    cipher = CIPHER_REGISTRY[selection.method]
    key = cipher.inverse_key(selection.key) if decrypt else selection.key
    return cipher.bind(key)


def _transform_text(text, method, key, decrypt: bool):
    cipher_fn = _resolve(method, key, decrypt)
    if isinstance(text, str):
        data = text.encode(TEXT_ENCODING, TEXT_ERRORS)
        return StreamProcessor().transform_bytes(data, cipher_fn).decode(TEXT_ENCODING, TEXT_ERRORS)
    return StreamProcessor().transform_bytes(text, cipher_fn)


def encrypt_text(text, method, key):
    """Encrypt ``text`` (str or bytes); the result has the same type."""
    return _transform_text(text, method, key, decrypt=False)


def decrypt_text(text, method, key):
    """Decrypt ``text``. Rotation negates the shift, XOR repeats the same call."""
    return _transform_text(text, method, key, decrypt=True)


def _current_umask() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return umask


# os.umask can only be read by setting it, so read it once at import
_UMASK = _current_umask()


def _discard(path: str):
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def _open_source(path) -> BinaryIO:
    try:
        return open(path, "rb")
    except OSError as e:
        raise SourceUnavailable(f"Could not open input file '{path}': {e.strerror or e}") from e


def _resolve_target(path: Path) -> Path:
    try:
        return path.resolve()
    except (OSError, RuntimeError):
        # Symlink loop; let open() report it
        return path


@contextmanager
def _open_sink(path, atomic: bool = True) -> Iterator[BinaryIO]:
    """
    Open ``path`` for binary writing.

    With ``atomic`` the data goes to a temporary file beside ``path`` which
    replaces it only when the block exits cleanly. A failed write leaves any
    existing file untouched. Symlinks are followed, and targets that are not
    regular files (devices, pipes) are always written in place.
    """
    path = Path(path)
    target = _resolve_target(path)
    if atomic and target.exists() and not target.is_file():
        atomic = False

    if not atomic:
        try:
            sink = open(path, "wb")
        except OSError as e:
            raise SinkUnavailable(f"Could not create output file '{path}': {e.strerror or e}") from e
        try:
            with sink:
                yield sink
        except StreamError:
            raise
        except OSError as e:
            raise SinkUnavailable(f"Could not write output file '{path}': {e.strerror or e}") from e
        return

    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    except OSError as e:
        raise SinkUnavailable(f"Could not create output file '{path}': {e.strerror or e}") from e

    try:
        with os.fdopen(fd, "wb") as sink:
            yield sink
        mode = target.stat().st_mode if target.exists() else 0o666 & ~_UMASK
        os.chmod(tmp_name, mode & 0o7777)
        os.replace(tmp_name, target)
    except StreamError:
        _discard(tmp_name)
        raise
    except OSError as e:
        _discard(tmp_name)
        raise SinkUnavailable(f"Could not write output file '{path}': {e.strerror or e}") from e
    except BaseException:
        _discard(tmp_name)
        raise


def _same_file(a, b) -> bool:
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False


def _transform_file(input_path, output_path, method, key, decrypt: bool,
                    chunk_size: int = DEFAULT_CHUNK_SIZE, atomic: bool = True) -> int:
    cipher_fn = _resolve(method, key, decrypt)
    processor = StreamProcessor(chunk_size)

    if not atomic and _same_file(input_path, output_path):
        raise SinkUnavailable(
            f"Output '{output_path}' is the input file; in-place writes need atomic mode"
        )

    source = _open_source(input_path)
    try:
        with _open_sink(output_path, atomic) as sink:
            with source:
                count = processor.transform(source, sink, cipher_fn)
    finally:
        source.close()

    action = "Decrypted" if decrypt else "Encrypted"
    log_info(f"{action} {count} byte(s): {input_path} -> {output_path} (chunk size {chunk_size})")
    return count


def encrypt_file(input_path, output_path, method, key,
                 chunk_size: int = DEFAULT_CHUNK_SIZE, atomic: bool = True) -> int:
    """Encrypt ``input_path`` into ``output_path``. Returns the byte count written."""
    return _transform_file(input_path, output_path, method, key, False, chunk_size, atomic)


def decrypt_file(input_path, output_path, method, key,
                 chunk_size: int = DEFAULT_CHUNK_SIZE, atomic: bool = True) -> int:
    """Decrypt ``input_path`` into ``output_path``. Returns the byte count written."""
    return _transform_file(input_path, output_path, method, key, True, chunk_size, atomic)

# ==========================================
#  CLI LOGIC
# ==========================================

def list_ciphers():
    """Print all available ciphers."""
    print("\nAvailable Ciphers:")
    print("=" * 60)
    for method, cipher in CIPHER_REGISTRY.items():
        print(f"  {method.value}  {cipher.name:<10} {cipher.description}")
    print("=" * 60)
    print(f"\nTotal: {len(CIPHER_REGISTRY)} cipher(s) registered.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cryptex",
        description="CRYPTEX - rotation and repeating-key XOR text/file transformer",
        formatter_class=argparse.RawTextHelpFormatter
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    method_help = "\n".join(f"  {c.name:<10}: {c.description}" for c in CIPHER_REGISTRY.values())
    parser.add_argument("-m", "--method", default=DEFAULT_METHOD.name.lower(),
                        help=f"Cipher: rotation/caesar (1) or xor (2). Default: rotation.\n{method_help}")
    parser.add_argument("-k", "--key",
                        help="Integer shift for rotation, key text for xor")

    # Main action group
    action_group = parser.add_mutually_exclusive_group(required=True)
    action_group.add_argument("-e", "--encrypt", action="store_true", help="Encrypt mode")
    action_group.add_argument("-d", "--decrypt", action="store_true", help="Decrypt mode")
    action_group.add_argument("-l", "--list", action="store_true", help="List all available ciphers")

    # I/O options
    io_group = parser.add_mutually_exclusive_group()
    io_group.add_argument("-t", "--text", help="Direct text input")
    io_group.add_argument("-i", "--input", help="Input file path (streamed when -o is given)")

    parser.add_argument("-o", "--output", help="Output file path")
    parser.add_argument("--hex", action="store_true",
                        help="Encrypt: print result as hex. Decrypt: -t/stdin input is hex.")
    parser.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE, metavar="N",
                        help=f"Bytes per streamed chunk (default: {DEFAULT_CHUNK_SIZE})")
    parser.add_argument("--no-atomic", action="store_true",
                        help="Write the output file directly instead of via temp file + rename")

    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbose output (info and warning messages)")
    return parser


def _read_input(args) -> bytes:
    if args.text is not None:
        if args.hex and args.decrypt:
            try:
                return bytes.fromhex(args.text)
            except ValueError as e:
                sys.exit(f"Error: --hex input is not valid hex: {e}")
        return args.text.encode(TEXT_ENCODING, TEXT_ERRORS)

    if args.input:
        with _open_source(args.input) as f:
            return f.read()

    if sys.stdin.isatty():
        print("[CRYPTEX] Paste input below. Ctrl+D (Unix) or Ctrl+Z (Win) to end:", file=sys.stderr)
    try:
        data = sys.stdin.buffer.read()
    except KeyboardInterrupt:
        sys.exit(0)
    if args.hex and args.decrypt:
        try:
            return bytes.fromhex(data.decode("ascii", "replace"))
        except ValueError as e:
            sys.exit(f"Error: --hex input is not valid hex: {e}")
    return data


def _write_output(args, result: bytes):
    if args.output:
        with _open_sink(args.output, atomic=not args.no_atomic) as sink:
            sink.write(result)
        print(f"Result saved to {args.output}")
    elif args.hex and args.encrypt:
        print(result.hex())
    else:
        try:
            print(result.decode(TEXT_ENCODING))
        except UnicodeDecodeError:
            print(f"[Raw Data]: {result.hex()}")


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    set_verbose(args.verbose)

    if args.list:
        list_ciphers()
        return

    if args.key is None:
        parser.error("-k/--key is required with --encrypt/--decrypt")
    if args.chunk_size < 1:
        parser.error("--chunk-size must be a positive integer")

    method = CipherMethod.parse(args.method)
    if method is None:
        print(f"Invalid method '{args.method}'. Using {DEFAULT_METHOD.name.lower()} by default.",
              file=sys.stderr)
        method = DEFAULT_METHOD

    action = "decrypted" if args.decrypt else "encrypted"
    try:
        if args.input and args.output:
            transform = decrypt_file if args.decrypt else encrypt_file
            count = transform(args.input, args.output, method, args.key,
                              chunk_size=args.chunk_size, atomic=not args.no_atomic)
            print(f"File {action} successfully! ({count} bytes written to {args.output})")
            return

        data = _read_input(args)
        transform = decrypt_text if args.decrypt else encrypt_text
        result = transform(data, method, args.key)
        log_info(f"{action.capitalize()} {len(result)} byte(s) with {method.name.lower()}")
        _write_output(args, result)
    except CipherError as e:
        sys.exit(f"Error: {e}")


if __name__ == "__main__":
    main()
