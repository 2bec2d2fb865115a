"""
LiteralFlow: static resolution of the string literals that can reach a call argument.

Two engines answer the same question over one Python module:
1. Tree: walks the ``ast`` of the source
2. Graph: simulates the operand stack over the bytecode control-flow graph

Unresolvable arguments produce an empty candidate set; callers treat that as
"unknown", never as "safe".
"""

__version__ = "0.1.0"
