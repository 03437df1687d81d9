"""
Live auction runtime: queue generation, operator transitions, round
records, persistence and broadcast for player auctions.
"""
