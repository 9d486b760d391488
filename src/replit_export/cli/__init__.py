"""Replit export CLI module.

Usage:
    python -m replit_export.cli --output ./repls --auth "s%3A..."
    replit-export -o ./repls -m 100
"""
