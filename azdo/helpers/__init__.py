"""
Terminal, output and timing helpers shared by all commands.
"""
