"""Name handling for ENS: labels, namehash and the namespace hierarchy.

Brief:
  A Name is a dot-separated sequence of labels. Each label is either a
  literal (ENSIP-15 normalized) label or an encoded labelhash of the form
  ``[<64 hex chars>]`` standing in for a label whose literal value is not
  known. The empty string is the root name.

  Node values are 32-byte ``bytes`` computed with the ENS namehash algorithm:

      namehash("")        = 0x00 * 32
      namehash(label.rest) = keccak256(namehash(rest) + labelhash(label))

  where an encoded label contributes the hash it encodes.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Iterator, List, Optional, Tuple

from ens.exceptions import InvalidName as _EnsInvalidName
from ens.utils import normalize_name
from eth_utils import keccak

from .errors import InvalidName

logger = logging.getLogger("ensresolve.names")

ROOT_NAME = ""
ZERO_NODE = b"\x00" * 32

_ENCODED_LABEL_RE = re.compile(r"^\[([0-9a-fA-F]{64})\]$")

# DNS wire format caps a label's length byte at 255; longer labels are sent as
# their encoded labelhash instead.
_MAX_DNS_LABEL_BYTES = 255


def is_encoded_labelhash(label: str) -> bool:
    """Return True when label has the ``[<64 hex>]`` encoded-labelhash shape."""

    return bool(_ENCODED_LABEL_RE.match(label))


def encode_labelhash(label_hash: bytes) -> str:
    """Brief: Format a 32-byte labelhash as an encoded label.

    Inputs:
      - label_hash: 32 raw bytes.

    Outputs:
      - str: ``[<lowercase hex>]``.
    """

    if len(label_hash) != 32:
        raise InvalidName(f"labelhash must be 32 bytes, got {len(label_hash)}")
    return f"[{label_hash.hex()}]"


def decode_labelhash(label: str) -> Optional[bytes]:
    """Return the 32 bytes encoded by label, or None if it is a literal label."""

    m = _ENCODED_LABEL_RE.match(label)
    if not m:
        return None
    return bytes.fromhex(m.group(1))


def labelhash(label: str) -> bytes:
    """Brief: keccak256 of a literal label, or the hash an encoded label carries.

    Inputs:
      - label: Literal or encoded label.

    Outputs:
      - bytes: 32-byte labelhash.
    """

    encoded = decode_labelhash(label)
    if encoded is not None:
        return encoded
    return keccak(text=label)


def split_labels(name: str) -> List[str]:
    """Brief: Split a name into labels, rejecting empty segments.

    Inputs:
      - name: Dot-separated name; "" is the root.

    Outputs:
      - list[str]: Labels leaf-first, empty for the root.

    Raises:
      - InvalidName: When any label is empty (e.g. 'a..eth', '.eth', 'eth.').
    """

    if not isinstance(name, str):
        raise InvalidName(f"name must be a string, got {type(name).__name__}")
    if name == ROOT_NAME:
        return []
    labels = name.split(".")
    if any(label == "" for label in labels):
        raise InvalidName(f"name {name!r} contains an empty label")
    return labels


def namehash(name: str) -> bytes:
    """Brief: Compute the ENS namehash of name.

    Inputs:
      - name: Dot-separated name, validated by split_labels.

    Outputs:
      - bytes: 32-byte node.

    Example:
      >>> namehash("").hex() == "00" * 32
      True
    """

    node = ZERO_NODE
    for label in reversed(split_labels(name)):
        node = keccak(node + labelhash(label))
    return node


def iter_hierarchy(name: str) -> Iterator[Tuple[str, bytes]]:
    """Brief: Yield (sub_name, node) pairs from name up to the root.

    Inputs:
      - name: Dot-separated name.

    Outputs:
      - Iterator of (sub_name, node), starting with name itself and ending with
        ("", ZERO_NODE); exactly len(labels) + 1 items, each sub_name one
        label shorter than the previous.

    Notes:
      - Input is validated before the first item is produced, so an invalid
        name fails on the first next() call.
      - Pure: calling it again with the same name yields the same sequence.

    Example:
      >>> [n for n, _ in iter_hierarchy("sub.example.eth")]
      ['sub.example.eth', 'example.eth', 'eth', '']
    """

    labels = split_labels(name)

    # Nodes are computed root-first, then replayed leaf-first.
    nodes = [ZERO_NODE]
    for label in reversed(labels):
        nodes.append(keccak(nodes[-1] + labelhash(label)))

    for i in range(len(labels) + 1):
        yield ".".join(labels[i:]), nodes[len(labels) - i]


def is_normalized_label(label: str) -> bool:
    """Return True when label is a non-empty ENSIP-15 normalized literal label."""

    if not label or "." in label:
        return False
    try:
        return normalize_name(label) == label
    except (_EnsInvalidName, ValueError):
        return False


def is_interpreted_label(label: str) -> bool:
    """A label is usable in a request if it is normalized or an encoded labelhash."""

    if label.startswith("["):
        return is_encoded_labelhash(label)
    return is_normalized_label(label)


def is_normalized_name(name: str) -> bool:
    """Brief: True when every label of name is a normalized literal label.

    Inputs:
      - name: Candidate name ("" counts as normalized).

    Outputs:
      - bool.
    """

    try:
        labels = split_labels(name)
    except InvalidName:
        return False
    return all(is_normalized_label(label) for label in labels)


def validate_name(name: str) -> str:
    """Brief: Ensure name is an interpreted name and return it unchanged.

    Inputs:
      - name: Candidate name.

    Outputs:
      - str: name.

    Raises:
      - InvalidName: Empty labels, unnormalized literal labels or malformed
        encoded labels.
    """

    for label in split_labels(name):
        if not is_interpreted_label(label):
            raise InvalidName(
                f"label {label!r} of {name!r} is neither normalized nor an encoded labelhash"
            )
    return name


def heal_name(name: str, heal: Callable[[bytes], Optional[str]]) -> str:
    """Brief: Replace encoded labels with literal labels where a healer knows them.

    Inputs:
      - name: Interpreted name.
      - heal: Callable mapping a 32-byte labelhash to a literal label or None.

    Outputs:
      - str: Name with every healable encoded label replaced.

    Notes:
      - A healed label is used only when it is normalized and hashes back to
        the encoded labelhash; anything else keeps the encoded form.
    """

    out: List[str] = []
    for label in split_labels(name):
        encoded = decode_labelhash(label)
        if encoded is None:
            out.append(label)
            continue
        healed = heal(encoded)
        if healed and is_normalized_label(healed) and keccak(text=healed) == encoded:
            out.append(healed)
        else:
            if healed:
                logger.debug("Discarding healed label %r for %s", healed, label)
            out.append(label)
    return ".".join(out)


def dns_encode_name(name: str) -> bytes:
    """Brief: DNS wire-encode name for ENSIP-10 ``resolve(bytes,bytes)``.

    Inputs:
      - name: Interpreted name.

    Outputs:
      - bytes: Length-prefixed labels terminated by a zero byte.

    Notes:
      - Labels longer than 255 bytes are replaced by their encoded labelhash.

    Example:
      >>> dns_encode_name("alice.eth")
      b'\\x05alice\\x03eth\\x00'
    """

    out = bytearray()
    for label in split_labels(name):
        raw = label.encode("utf-8")
        if len(raw) > _MAX_DNS_LABEL_BYTES:
            raw = encode_labelhash(labelhash(label)).encode("ascii")
        out.append(len(raw))
        out.extend(raw)
    out.append(0)
    return bytes(out)


def dns_decode_name(wire: bytes) -> str:
    """Brief: Inverse of dns_encode_name.

    Inputs:
      - wire: DNS-encoded name.

    Outputs:
      - str: Dot-separated name.

    Raises:
      - InvalidName: Truncated input or missing terminator.
    """

    labels: List[str] = []
    i = 0
    while i < len(wire):
        length = wire[i]
        i += 1
        if length == 0:
            return ".".join(labels)
        if i + length > len(wire):
            raise InvalidName("truncated DNS-encoded name")
        labels.append(wire[i : i + length].decode("utf-8"))
        i += length
    raise InvalidName("DNS-encoded name is missing its terminating zero byte")


def interpret_name(name: str) -> str:
    """Brief: Replace every unnormalized literal label with its encoded labelhash.

    Inputs:
      - name: Any dot-separated name without empty labels.

    Outputs:
      - str: Interpreted name accepted by validate_name.
    """

    out: List[str] = []
    for label in split_labels(name):
        if is_interpreted_label(label):
            out.append(label)
        else:
            out.append(encode_labelhash(keccak(text=label)))
    return ".".join(out)
