# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""Linear layer: block vectors, block matrices, noise models, linear factors."""
