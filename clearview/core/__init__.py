"""
Core module for the Clearview pipeline architecture.

Contains the event bus, typed events, bounded stage channels, cancellation
tokens, pipeline stages and protocol definitions for external collaborators.
"""
