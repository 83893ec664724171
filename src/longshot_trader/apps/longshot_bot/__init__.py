"""Longshot trading bot for Polymarket.

Scan open prediction markets for cheap, low-probability outcomes, buy them
under daily, per-market and position-count caps, and sell automatically
once the price reaches a multiple of the entry.  Paper mode simulates
fills; live mode submits signed CLOB orders.
"""
