"""
BTC Staking - Script Layer

Opcode encoding, Taproot script trees, transaction hashing and the
tapscript interpreter used to validate spends.
"""
