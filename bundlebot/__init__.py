"""
Bundle dispatch engine and volume trading scheduler for Solana tokens.
"""
