"""
Command registry, dispatch and the execution context shared by every command.
"""
