"""
Sécurité: validation des commandes stdio.
"""

from .validator import CommandValidator, COMMAND_FORBIDDEN_TOKENS, ARGUMENT_FORBIDDEN_TOKENS

__all__ = ["CommandValidator", "COMMAND_FORBIDDEN_TOKENS", "ARGUMENT_FORBIDDEN_TOKENS"]
