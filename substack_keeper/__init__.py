"""
SubStack keeper: finds due subscription charges on Stacks and executes them.
"""

__version__ = "0.1.0"
