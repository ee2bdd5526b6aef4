# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""Core primitives: keys, the error taxonomy and 3D Lie-group math."""
