# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""Nonlinear layer: manifolds, assignments, expressions and expression factors."""
