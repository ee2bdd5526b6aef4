# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""
Exception taxonomy.

InvalidArgumentError
    Construction-time misconfiguration (missing or mis-dimensioned noise
    model, malformed sigmas). DuplicateKeyError is the variant raised by
    inserts of a key that is already present.

KeyNotFoundError
    Lookup of an absent key in a BlockVector, a Values assignment or a
    JacobianMap. Subclasses KeyError so plain mapping code keeps working.

StructureMismatchError
    Arithmetic between BlockVectors of differing structure. Only raised
    while ``__debug__`` is true; under ``python -O`` the check is skipped and
    the result is undefined.
"""

from __future__ import annotations


class ExprFactorError(Exception):
    """Base class of all errors raised by ExprFactor."""


class InvalidArgumentError(ExprFactorError, ValueError):
    pass


class DuplicateKeyError(InvalidArgumentError):
    pass


class KeyNotFoundError(ExprFactorError, KeyError):
    def __str__(self) -> str:
        # KeyError repr()s its argument; keep the message readable.
        return str(self.args[0]) if self.args else ""


class StructureMismatchError(ExprFactorError, AssertionError):
    pass
