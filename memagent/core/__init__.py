"""
Memory Agent Core
==================
The conversation controller and everything it drives per turn:
session state, prompt assembly, generation and the degradation policy.
"""
