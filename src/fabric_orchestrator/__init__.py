"""
fabric_orchestrator

This package is a convergence engine for bare metal spine/leaf fabrics.

We keep modules small and well separated:
core contains shared data structures, errors and serialization
inventory contains the switch, fact and assignment stores and their loaders
fabric contains topology logic: interfaces, hierarchy, roles, validation
ipam contains address pools and subnet arithmetic
bgp contains autonomous system number derivation
convergence contains the step pipeline that advances a switch status
agent contains the reconciler, the controller loop and runtime wiring
"""
