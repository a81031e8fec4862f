"""
Face descriptor codec.

Descriptors are 128 floats produced by the dlib face recognition model and
stored as JSON text, one per registered person.
"""
import json
from typing import Sequence, Union

import numpy as np

from attendance.errors import DescriptorError

DESCRIPTOR_LENGTH = 128


def parse_descriptor(text: Union[str, bytes], length: int = DESCRIPTOR_LENGTH) -> np.ndarray:
    """Parse a stored JSON descriptor into a float array.

    Raises:
        DescriptorError: text is not a JSON array of ``length`` finite numbers.
    """
    if text is None:
        raise DescriptorError("Descriptor is missing")

    try:
        values = json.loads(text)
    except (TypeError, ValueError) as e:
        raise DescriptorError(f"Descriptor is not valid JSON: {e}") from e

    if isinstance(values, dict):
        # Float32Array serialized by JSON.stringify ends up as {"0": .., "1": ..}
        try:
            values = [values[str(i)] for i in range(len(values))]
        except KeyError as e:
            raise DescriptorError(f"Descriptor object is missing index {e}") from e

    if not isinstance(values, list):
        raise DescriptorError("Descriptor must be a JSON array")

    if len(values) != length:
        raise DescriptorError(f"Descriptor has {len(values)} values, expected {length}")

    if any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in values):
        raise DescriptorError("Descriptor contains non-numeric values")

    descriptor = np.asarray(values, dtype=np.float64)
    if not np.all(np.isfinite(descriptor)):
        raise DescriptorError("Descriptor contains non-finite values")

    return descriptor


def serialize_descriptor(values: Sequence[float], length: int = DESCRIPTOR_LENGTH) -> str:
    """Serialize a descriptor to JSON text."""
    descriptor = np.asarray(values, dtype=np.float64).ravel()
    if descriptor.shape[0] != length:
        raise DescriptorError(f"Descriptor has {descriptor.shape[0]} values, expected {length}")
    if not np.all(np.isfinite(descriptor)):
        raise DescriptorError("Descriptor contains non-finite values")
    return json.dumps(descriptor.tolist())


def face_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Euclidean distance between two descriptors (0 means identical), from face_recognition."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise DescriptorError(f"Descriptor shapes differ: {a.shape} vs {b.shape}")

    import face_recognition as fr
    return float(fr.face_distance([b], a)[0])
