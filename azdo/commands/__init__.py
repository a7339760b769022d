"""
Leaf and group commands. Every module exposes new_cmd_<name>(ctx) factories
that build Command nodes bound to the execution context.
"""
